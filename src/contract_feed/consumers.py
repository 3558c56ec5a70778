"""Ready-made EventConsumer implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, TextIO

from contract_feed.models.page import EventBatch

log = logging.getLogger(__name__)

BatchCallback = Callable[[EventBatch], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class CallbackConsumer:
    """Adapts a pair of async callables to the EventConsumer protocol."""

    def __init__(self, on_batch: BatchCallback, on_error: ErrorCallback | None = None) -> None:
        self._on_batch = on_batch
        self._on_error = on_error

    async def on_batch(self, batch: EventBatch) -> None:
        await self._on_batch(batch)

    async def on_error(self, error: Exception) -> None:
        if self._on_error is not None:
            await self._on_error(error)
        else:
            log.error("Unhandled feed error: %s", error)


class QueueConsumer:
    """Channel-style delivery: batches and errors land on asyncio queues.

    With ``maxsize=1`` and a FlowController the producer and the reader
    hand batches over strictly one at a time.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.batches: asyncio.Queue[EventBatch] = asyncio.Queue(maxsize=maxsize)
        self.errors: asyncio.Queue[Exception] = asyncio.Queue()

    async def on_batch(self, batch: EventBatch) -> None:
        await self.batches.put(batch)

    async def on_error(self, error: Exception) -> None:
        self.errors.put_nowait(error)


class JsonLinesConsumer:
    """Writes every delivered event as one JSON line."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self.events_written = 0

    async def on_batch(self, batch: EventBatch) -> None:
        for event in batch.events:
            self._out.write(json.dumps(event.to_dict()) + "\n")
            self.events_written += 1
        self._out.flush()
        if batch.meta is not None:
            log.info(
                "Batch page=%d total=%d events=%d scanned_to=%d completed=%s",
                batch.page, batch.total, len(batch.events),
                batch.meta.scan_latest_block_number, batch.meta.scan_latest_block_completed,
            )

    async def on_error(self, error: Exception) -> None:
        log.error("Feed error: %s", error)

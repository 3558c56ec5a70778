"""EventConsumer protocol - receives batches and errors from either delivery mode."""

from __future__ import annotations

from typing import Protocol

from contract_feed.models.page import EventBatch


class EventConsumer(Protocol):
    """Consumer-facing surface of the delivery engine.

    The consumer only ever observes batches, errors and termination; it
    never sees retry or backoff bookkeeping.
    """

    async def on_batch(self, batch: EventBatch) -> None:
        """Receive one batch. Pull batches carry ScanMeta; live events carry page=0, total=0."""
        ...

    async def on_error(self, error: Exception) -> None:
        """Receive a surfaced failure. Delivery continues afterwards."""
        ...

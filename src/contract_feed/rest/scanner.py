"""Cursor scanner - drives incremental backfill over a moving block window."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable

from contract_feed.errors import ContractFeedError
from contract_feed.interfaces.consumer import EventConsumer
from contract_feed.interfaces.fetcher import EventFetcher
from contract_feed.models.page import Cursor, EventBatch, Page, ScanMeta
from contract_feed.rest.flow import FlowController

log = logging.getLogger(__name__)


class CursorScanner:
    """Turns a one-shot subscription into a sequence of fetch cycles.

    Each cycle:
    1. Checks the chain head; if it is behind ``to_block`` the cycle is a no-op
    2. Fetches the page the cursor points at (the fetcher retries on its own)
    3. Builds a batch carrying ScanMeta for the window
    4. Advances the cursor: next page, or the next window once exhausted
    5. Delivers the batch, then waits for an acknowledgement if flow control is on

    A failed fetch leaves the cursor untouched so the same window/page is
    retried next cycle. Cycles never overlap.
    """

    def __init__(
        self,
        fetcher: EventFetcher,
        consumer: EventConsumer,
        from_block: int = 0,
        *,
        page_size: int = 100,
        window_span: int = 10,
        poll_interval: float = 5.0,
        address: str | None = None,
        event_names: list[str] | None = None,
        flow: FlowController | None = None,
        cursor: Cursor | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        if window_span <= 0:
            raise ValueError(f"window_span must be positive, got {window_span}")

        self._fetcher = fetcher
        self._consumer = consumer
        self._window_span = window_span
        self._poll_interval = poll_interval
        self._flow = flow
        self._cursor = cursor or Cursor.starting_at(
            from_block, window_span, page_size, address=address, event_names=event_names,
        )
        self._chain_head: int | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def cursor(self) -> Cursor:
        return self._cursor

    @property
    def chain_head(self) -> int | None:
        """Last chain head observed, from the head endpoint or inline in a page."""
        return self._chain_head

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Lifecycle ──────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        """Run the scan loop as a background task."""
        if self.is_running:
            raise RuntimeError("scanner already running")
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the in-flight cycle to finish."""
        log.info("Scanner stop requested")
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def run(self) -> None:
        log.info(
            "Scanning from block %d (window %d-%d, page size %d)",
            self._cursor.from_block, self._cursor.from_block, self._cursor.to_block,
            self._cursor.page_size,
        )
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception as exc:
                log.error("Scan cycle error: %s", exc, exc_info=True)
                await self._report(exc)
            await self._wait_or_stop(asyncio.sleep(self._poll_interval))
        log.info("Scanner stopped at window %s", self._cursor.window)

    # ── One cycle ──────────────────────────────────────────

    async def run_cycle(self) -> EventBatch | None:
        """Run one fetch cycle. Returns the delivered batch, or None if nothing was delivered."""
        cursor = self._cursor
        try:
            head = await self._current_head()
            if head < cursor.to_block:
                log.info(
                    "toBlock (%d) > latest block (%d), waiting for next cycle",
                    cursor.to_block, head,
                )
                return None
            page = await self._fetcher.fetch_page(cursor)
        except ContractFeedError as exc:
            log.error("Fetch for window %s failed: %s", cursor.window, exc)
            await self._report(exc)
            return None

        if page.latest_block_number is not None:
            self._chain_head = page.latest_block_number

        batch = self._build_batch(cursor, page)
        if batch.meta is not None and batch.meta.scan_latest_block_completed:
            cursor.advance(self._window_span)
        else:
            cursor.next_page()

        await self._deliver(batch)
        return batch

    def _build_batch(self, cursor: Cursor, page: Page) -> EventBatch:
        exhausted = len(page.events) < cursor.page_size or page.page * page.size == page.total
        return EventBatch(
            events=page.events,
            page=page.page,
            total=page.total,
            meta=ScanMeta(
                scan_latest_block_number=cursor.to_block,
                scan_latest_block_completed=exhausted,
            ),
            window=cursor.window,
        )

    async def _current_head(self) -> int:
        cached = self._chain_head
        if cached is not None and cached >= self._cursor.to_block:
            return cached
        self._chain_head = await self._fetcher.latest_block_number()
        return self._chain_head

    async def _deliver(self, batch: EventBatch) -> None:
        log.debug(
            "Delivering %d events for window %s (completed=%s)",
            len(batch.events), batch.window,
            batch.meta.scan_latest_block_completed if batch.meta else None,
        )
        try:
            await self._consumer.on_batch(batch)
        except Exception:
            log.exception("Consumer failed handling batch for window %s", batch.window)

        # Every delivered batch needs its own ack, failed or not.
        if self._flow is not None:
            await self._wait_or_stop(self._flow.wait())

    async def _report(self, exc: Exception) -> None:
        try:
            await self._consumer.on_error(exc)
        except Exception:
            log.exception("Consumer error callback failed")

    async def _wait_or_stop(self, aw: Awaitable[None]) -> bool:
        """Await ``aw`` unless stop is signalled first. Returns True if ``aw`` finished."""
        waiter = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {waiter, stopper}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            pending = [fut for fut in (waiter, stopper) if not fut.done()]
            for fut in pending:
                fut.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        return waiter in done

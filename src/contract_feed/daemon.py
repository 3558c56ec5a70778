"""Feed daemon - wires fetcher, scanner, stream client and progress store together."""

from __future__ import annotations

import asyncio
import logging
import signal

from contract_feed.consumers import JsonLinesConsumer
from contract_feed.interfaces.consumer import EventConsumer
from contract_feed.interfaces.store import ProgressStore
from contract_feed.models.config import FeedConfig, FeedMode
from contract_feed.models.page import Cursor, EventBatch
from contract_feed.models.stream import StreamRequest
from contract_feed.rest.fetcher import RetryingFetcher
from contract_feed.rest.flow import FlowController
from contract_feed.rest.retry import RetryPolicy
from contract_feed.rest.scanner import CursorScanner
from contract_feed.storage.sqlite import SQLiteProgressStore, subscription_key
from contract_feed.stream.client import StreamClient

log = logging.getLogger(__name__)


class ProgressRecorder:
    """Consumer wrapper for pull mode.

    Forwards each batch to the user consumer, then persists the scanner's
    next cursor together with the batch's ScanMeta. Every batch is
    acknowledged (when flow control is on), including ones the consumer
    failed on.
    """

    def __init__(
        self,
        inner: EventConsumer,
        store: ProgressStore,
        key: str,
        flow: FlowController | None = None,
    ) -> None:
        self._inner = inner
        self._store = store
        self._key = key
        self._flow = flow
        self._scanner: CursorScanner | None = None
        self.batches_recorded = 0

    def bind(self, scanner: CursorScanner) -> None:
        self._scanner = scanner

    async def on_batch(self, batch: EventBatch) -> None:
        try:
            await self._inner.on_batch(batch)
            if batch.meta is not None and self._scanner is not None:
                await self._store.save_progress(self._key, self._scanner.cursor, batch.meta)
                self.batches_recorded += 1
                if batch.events:
                    from_block, to_block, page = batch.window or (0, 0, 0)
                    await self._store.log_activity(
                        "batch_delivered",
                        f"{len(batch.events)} events from blocks {from_block}-{to_block} page {page}",
                        key=self._key,
                    )
        finally:
            # The scanner waits for one ack per batch, delivered or failed.
            # Progress is not saved for a batch the consumer failed on.
            if self._flow is not None:
                self._flow.ack()

    async def on_error(self, error: Exception) -> None:
        await self._store.log_activity("error", str(error), key=self._key)
        await self._inner.on_error(error)


class FeedDaemon:
    """Runs one subscription in poll or stream mode until stopped.

    Poll mode resumes from the progress stored for the subscription's
    filter, falling back to ``cfg.from_block`` on first run.
    """

    def __init__(self, cfg: FeedConfig, consumer: EventConsumer | None = None) -> None:
        cfg.validate()
        self._cfg = cfg
        self._stopped = False
        self.key = subscription_key(cfg.address, cfg.event_names)

        self.consumer: EventConsumer = consumer or JsonLinesConsumer()
        self.store = SQLiteProgressStore(cfg.db_path)
        self.fetcher = RetryingFetcher(
            cfg.base_url,
            request_timeout=cfg.request_timeout,
            policy=RetryPolicy(max_attempts=cfg.max_attempts, backoff=cfg.retry_backoff),
        )
        self.flow: FlowController | None = FlowController() if cfg.flow_control else None
        self.scanner: CursorScanner | None = None
        self.stream: StreamClient | None = None

    async def start(self) -> None:
        """Initialize the store and run the configured mode until stopped."""
        log.info("Starting contract_feed daemon")
        log.info("  Mode: %s", self._cfg.mode.value)
        log.info("  Service: %s", self._cfg.base_url)
        log.info("  Subscription: %s", self.key)

        await self.store.initialize()
        await self.store.log_activity("feed_started", f"Feed started in {self._cfg.mode.value} mode", key=self.key)
        try:
            if self._cfg.mode is FeedMode.POLL:
                await self._run_poll()
            else:
                await self._run_stream()
        finally:
            await self.store.log_activity("feed_stopped", "Feed stopped", key=self.key)
            await self.fetcher.close()
            await self.store.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._stopped = True
        if self.scanner is not None:
            await self.scanner.stop()
        if self.stream is not None:
            await self.stream.stop()

    async def restore_cursor(self) -> Cursor | None:
        """Next cursor saved for this subscription, if any."""
        record = await self.store.get_progress(self.key)
        if record is None:
            return None
        log.info(
            "Restored progress: window %d-%d page %d (scanned to %d, completed=%s)",
            record.from_block, record.to_block, record.page_number,
            record.scan_latest_block_number, record.scan_latest_block_completed,
        )
        return record.to_cursor(self._cfg.page_size, self._cfg.address, self._cfg.event_names)

    async def _run_poll(self) -> None:
        cfg = self._cfg
        recorder = ProgressRecorder(self.consumer, self.store, self.key, self.flow)
        self.scanner = CursorScanner(
            self.fetcher,
            recorder,
            cfg.from_block,
            page_size=cfg.page_size,
            window_span=cfg.window_span,
            poll_interval=cfg.poll_interval,
            address=cfg.address,
            event_names=cfg.event_names,
            flow=self.flow,
            cursor=await self.restore_cursor(),
        )
        recorder.bind(self.scanner)
        if self._stopped:
            return
        await self.scanner.start()

    async def _run_stream(self) -> None:
        cfg = self._cfg
        self.stream = StreamClient(
            cfg.effective_stream_url(),
            StreamRequest(from_block=cfg.from_block, to_block=cfg.to_block, address=cfg.address),
            self.consumer,
            buffer_size=cfg.buffer_size,
            ping_interval=cfg.ping_interval,
            handshake_timeout=cfg.handshake_timeout,
            reconnect=cfg.reconnect,
        )
        if self._stopped:
            return
        await self.stream.start()
        try:
            await self.stream.wait()
        finally:
            await self.stream.stop()
        if self.stream.ended:
            await self.store.log_activity("stream_ended", "Service ended the stream", key=self.key)


async def run_daemon(cfg: FeedConfig, consumer: EventConsumer | None = None) -> None:
    """Entry point for running the daemon."""
    daemon = FeedDaemon(cfg, consumer)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()

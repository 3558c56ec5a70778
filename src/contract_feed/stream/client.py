"""Stream client - push-mode subscription over a StreamConnection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiohttp

from contract_feed.errors import ContractFeedError, TransportError
from contract_feed.interfaces.consumer import EventConsumer
from contract_feed.models.config import ReconnectConfig
from contract_feed.models.stream import StreamMessage, StreamRequest
from contract_feed.stream.connection import StreamConnection
from contract_feed.stream.dispatcher import MessageDispatcher

log = logging.getLogger(__name__)


class StreamClient:
    """Subscribes to the event stream and feeds frames to a MessageDispatcher.

    Frames read by the connection go through a bounded buffer to a single
    processing task, so dispatch order matches the order frames arrived.
    Processing ends on an ``end`` frame, on ``stop()``, or when the
    connection drops and reconnection is disabled or exhausted.

    Usage::

        client = StreamClient(url, StreamRequest(from_block=100), consumer)
        await client.start()
        await client.wait()
    """

    def __init__(
        self,
        url: str,
        request: StreamRequest,
        consumer: EventConsumer,
        *,
        buffer_size: int = 100,
        ping_interval: float = 30.0,
        handshake_timeout: float = 45.0,
        reconnect: ReconnectConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._request = request
        self._consumer = consumer
        self._dispatcher = MessageDispatcher(consumer)
        self._ping_interval = ping_interval
        self._handshake_timeout = handshake_timeout
        self._reconnect = reconnect or ReconnectConfig()
        self._session = session

        # None is the end-of-stream sentinel queued when the connection is gone for good.
        self._buffer: asyncio.Queue[StreamMessage | None] = asyncio.Queue(maxsize=buffer_size)
        self._connection: StreamConnection | None = None
        self._process_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()
        self._stopping = False
        self._ended = False
        self._reconnects = 0

    @property
    def connection(self) -> StreamConnection | None:
        return self._connection

    @property
    def ended(self) -> bool:
        """True once the service sent an ``end`` frame."""
        return self._ended

    @property
    def reconnects(self) -> int:
        return self._reconnects

    @property
    def is_running(self) -> bool:
        return self._process_task is not None and not self._finished.is_set()

    # ── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        """Connect, send the subscription request and start processing."""
        if self._process_task is not None:
            raise RuntimeError("stream client already started")
        await self._open()
        self._process_task = asyncio.create_task(self._process_messages())

    async def wait(self) -> None:
        """Wait until processing has finished."""
        await self._finished.wait()

    async def stop(self) -> None:
        """Stop processing and close the connection."""
        if self._stopping:
            return
        log.info("Stopping stream client")
        self._stopping = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
        if self._ended and self._process_task is not None:
            # After an end frame the processing task closes the connection itself.
            await asyncio.gather(self._process_task, return_exceptions=True)
        if self._connection is not None:
            await self._connection.close()
        if self._process_task is not None and not self._process_task.done():
            self._process_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._process_task
        self._finished.set()

    async def send(self, payload: dict[str, Any] | str) -> None:
        """Send a user message on the current connection."""
        if self._connection is None:
            raise TransportError("stream client is not started")
        await self._connection.send(payload)

    async def __aenter__(self) -> StreamClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    # ── Connection management ──────────────────────────────

    async def _open(self) -> None:
        async def closed() -> None:
            await self._on_connection_closed(connection)

        connection = StreamConnection(
            self._url,
            on_message=self._enqueue,
            on_error=self._report,
            on_close=closed,
            ping_interval=self._ping_interval,
            handshake_timeout=self._handshake_timeout,
            session=self._session,
        )
        try:
            await connection.connect()
            await connection.send(self._request.to_dict())
            if not connection.is_connected:
                raise TransportError("connection closed while subscribing")
        except (ContractFeedError, asyncio.CancelledError):
            await connection.close()
            raise
        # Only a subscribed connection becomes current and may trigger a reconnect.
        self._connection = connection
        log.info("Subscribed to %s with %s", self._url, self._request.to_dict())

    async def _enqueue(self, message: StreamMessage) -> None:
        if self._ended:
            return
        await self._buffer.put(message)

    async def _on_connection_closed(self, connection: StreamConnection) -> None:
        if self._stopping or self._ended or connection is not self._connection:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._reconnect.enabled:
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())
        else:
            await self._buffer.put(None)

    async def _reconnect_loop(self) -> None:
        policy = self._reconnect
        for attempt in range(1, policy.max_retries + 1):
            delay = policy.retry_interval * attempt
            log.info(
                "Reconnecting in %.1fs (attempt %d/%d)", delay, attempt, policy.max_retries,
            )
            await asyncio.sleep(delay)
            if self._stopping:
                return

            previous = self._connection
            if previous is not None:
                await previous.close()
            try:
                await self._open()
            except ContractFeedError as exc:
                log.warning("Reconnect attempt %d failed: %s", attempt, exc)
                continue
            self._reconnects += 1
            log.info("Reconnected after %d attempt(s)", attempt)
            return

        error = TransportError(f"reconnect failed after {policy.max_retries} attempts")
        log.error("%s", error)
        await self._report(error)
        await self._buffer.put(None)

    # ── Processing ─────────────────────────────────────────

    async def _process_messages(self) -> None:
        try:
            while True:
                message = await self._buffer.get()
                if message is None:
                    log.info("Connection gone, stopping message processing")
                    break
                try:
                    keep_going = await self._dispatcher.dispatch(message)
                except Exception as exc:
                    log.error("Dispatch failed: %s", exc, exc_info=True)
                    await self._report(exc)
                    continue
                if not keep_going:
                    self._ended = True
                    break
        finally:
            self._finished.set()

        if self._ended and self._connection is not None:
            # Frames after ``end`` are discarded; free any reader blocked on a full buffer.
            while not self._buffer.empty():
                self._buffer.get_nowait()
            await self._connection.close()

    async def _report(self, exc: Exception) -> None:
        try:
            await self._consumer.on_error(exc)
        except Exception:
            log.exception("Consumer error callback failed")

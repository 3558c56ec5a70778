"""Persistent WebSocket connection with concurrent read and keepalive loops."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import aiohttp

from contract_feed.errors import (
    ConnectionClosedError,
    ConnectionStateError,
    ContractFeedError,
    NotConnectedError,
    TransportError,
)
from contract_feed.models.stream import ConnectionState, StreamMessage

log = logging.getLogger(__name__)

MessageHandler = Callable[[StreamMessage], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]

# Close codes that end a connection without being reported as an error.
EXPECTED_CLOSE_CODES = frozenset({
    aiohttp.WSCloseCode.OK,
    aiohttp.WSCloseCode.GOING_AWAY,
})

_CLOSE_TYPES = frozenset({
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
})


class StreamConnection:
    """One persistent connection to the event stream.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> CLOSING -> CLOSED.

    Once connected two loops run over the same socket:
    - the read loop decodes each frame and hands it to ``on_message``
    - the write loop sends a ping every ``ping_interval`` seconds

    The socket and its state are guarded by one lock, held only for a state
    change or a single send, never across a receive. A read failure ends
    both loops; a frame that fails to decode is reported and skipped.
    """

    def __init__(
        self,
        url: str,
        on_message: MessageHandler,
        on_error: ErrorHandler | None = None,
        on_close: CloseHandler | None = None,
        ping_interval: float = 30.0,
        handshake_timeout: float = 45.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close
        self._ping_interval = ping_interval
        self._handshake_timeout = handshake_timeout
        self._session = session
        self._owns_session = session is None

        self._lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._done = asyncio.Event()
        self._closed_notified = False
        self._read_task: asyncio.Task[None] | None = None
        self._write_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ── Lifecycle ──────────────────────────────────────────

    async def connect(self) -> None:
        """Perform the handshake and start the read and write loops."""
        async with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                raise ConnectionStateError(
                    f"connect() requires state disconnected, current state is {self._state.value}"
                )
            self._state = ConnectionState.CONNECTING

        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(self._url, autoping=True),
                timeout=self._handshake_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            async with self._lock:
                self._state = ConnectionState.DISCONNECTED
            await self._release_session()
            raise TransportError(f"connect to websocket failed: {exc}") from exc

        async with self._lock:
            aborted = self._state is not ConnectionState.CONNECTING
            if not aborted:
                self._ws = ws
                self._state = ConnectionState.CONNECTED
        if aborted:
            await ws.close()
            raise ConnectionStateError("connection closed during handshake")
        log.info("Stream connected: %s", self._url)

        self._read_task = asyncio.create_task(self._read_loop(ws))
        self._write_task = asyncio.create_task(self._write_loop())

    async def send(self, payload: dict[str, Any] | str) -> None:
        """Send one JSON text frame. Fails fast with NotConnectedError if not connected."""
        text = payload if isinstance(payload, str) else json.dumps(payload)
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED or self._ws is None:
                raise NotConnectedError()
            try:
                await self._ws.send_str(text)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
                raise TransportError(f"send failed: {exc}") from exc

    async def close(self) -> None:
        """Stop both loops and close the socket. Safe to call more than once."""
        async with self._lock:
            if self._state is ConnectionState.CLOSING:
                return
            was_connected = self._state is ConnectionState.CONNECTED
            if self._state is not ConnectionState.CLOSED:
                self._state = ConnectionState.CLOSING
            ws = self._ws

        self._done.set()
        if was_connected and ws is not None:
            log.info("Closing stream connection")
            await ws.close()

        current = asyncio.current_task()
        loops = [t for t in (self._read_task, self._write_task) if t is not None and t is not current]
        await asyncio.gather(*loops, return_exceptions=True)

        async with self._lock:
            self._state = ConnectionState.CLOSED
            self._ws = None
        await self._release_session()

    async def wait_closed(self) -> None:
        """Wait until the read loop has terminated."""
        await self._done.wait()
        if self._read_task is not None and self._read_task is not asyncio.current_task():
            await asyncio.gather(self._read_task, return_exceptions=True)

    # ── Loops ──────────────────────────────────────────────

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error: Exception | None = None
        try:
            while not self._done.is_set():
                msg = await ws.receive()

                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_frame(msg.data)
                    continue
                if msg.type is aiohttp.WSMsgType.ERROR:
                    error = TransportError(f"read failed: {ws.exception() or msg.data}")
                    break
                if msg.type in _CLOSE_TYPES:
                    code = ws.close_code
                    if not self._done.is_set() and code not in EXPECTED_CLOSE_CODES:
                        error = ConnectionClosedError(code, str(msg.extra or ""))
                    break
                # ping/pong control frames are answered by aiohttp (autoping)
        except (aiohttp.ClientError, ConnectionError) as exc:
            error = TransportError(f"read failed: {exc}")
        finally:
            await self._teardown(ws, error)

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = StreamMessage.from_json(raw)
        except ContractFeedError as exc:
            log.warning("Dropping undecodable frame: %s", exc)
            await self._report(exc)
            return
        try:
            await self._on_message(message)
        except Exception as exc:
            log.error("Message handler failed: %s", exc, exc_info=True)
            await self._report(exc)

    async def _write_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._done.wait(), timeout=self._ping_interval)
                return
            except asyncio.TimeoutError:
                pass

            failure: Exception | None = None
            async with self._lock:
                if self._state is not ConnectionState.CONNECTED or self._ws is None:
                    return
                try:
                    await self._ws.ping()
                except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
                    failure = TransportError(f"ping failed: {exc}")
            if failure is not None:
                log.warning("Keepalive failed: %s", failure)
                await self._report(failure)
                return
            log.debug("Ping sent")

    async def _teardown(self, ws: aiohttp.ClientWebSocketResponse, error: Exception | None) -> None:
        """Read loop exit: signal termination, mark closed, notify callbacks once."""
        self._done.set()
        async with self._lock:
            closing_locally = self._state is ConnectionState.CLOSING
            if not closing_locally:
                self._state = ConnectionState.CLOSED
                self._ws = None
        if not closing_locally and not ws.closed:
            await ws.close()

        if error is not None:
            log.warning("Stream connection lost: %s", error)
            await self._report(error)
        else:
            log.info("Stream connection closed")

        if not self._closed_notified:
            self._closed_notified = True
            if self._on_close is not None:
                try:
                    await self._on_close()
                except Exception:
                    log.exception("Close handler failed")

    async def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            await self._on_error(exc)
        except Exception:
            log.exception("Error handler failed")

    async def _release_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

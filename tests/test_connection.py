"""StreamConnection lifecycle against a local aiohttp WebSocket server."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import ClientWebSocketResponse, WSCloseCode
from aiohttp.test_utils import unused_port

from contract_feed.errors import (
    ConnectionClosedError,
    ConnectionStateError,
    DecodeError,
    NotConnectedError,
    TransportError,
)
from contract_feed.models.stream import ConnectionState, MessageType
from contract_feed.stream.connection import StreamConnection


class Recorder:
    """Collects connection callbacks."""

    def __init__(self) -> None:
        self.messages = []
        self.errors = []
        self.closes = 0
        self.closed = asyncio.Event()

    async def on_message(self, message):
        self.messages.append(message)

    async def on_error(self, error):
        self.errors.append(error)

    async def on_close(self):
        self.closes += 1
        self.closed.set()

    def connection(self, url: str, **kwargs) -> StreamConnection:
        return StreamConnection(
            url,
            on_message=self.on_message,
            on_error=self.on_error,
            on_close=self.on_close,
            handshake_timeout=2.0,
            **kwargs,
        )

    async def wait_for_messages(self, count: int, timeout: float = 2.0) -> None:
        async def _poll():
            while len(self.messages) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)


# ── Connect / send / receive ──────────────────────────────────────


async def test_connect_send_and_receive(stream_service):
    stream_service.script = [{"type": "heartbeat"}, {"type": "end", "message": "bye"}]
    rec = Recorder()
    conn = rec.connection(stream_service.url)

    await conn.connect()
    assert conn.state is ConnectionState.CONNECTED
    assert conn.is_connected

    await conn.send({"fromBlock": 100})
    await rec.wait_for_messages(2)

    assert stream_service.requests == [{"fromBlock": 100}]
    assert [m.type for m in rec.messages] == [MessageType.HEARTBEAT, MessageType.END]
    assert rec.errors == []

    await conn.close()
    assert conn.state is ConnectionState.CLOSED


async def test_messages_arrive_in_order(stream_service):
    stream_service.script = [{"type": "events", "page": i, "data": []} for i in range(1, 21)]
    rec = Recorder()
    conn = rec.connection(stream_service.url)
    await conn.connect()
    await conn.send({})

    await rec.wait_for_messages(20)
    assert [m.page for m in rec.messages] == list(range(1, 21))
    await conn.close()


async def test_undecodable_frame_skipped(stream_service):
    stream_service.script = ["{garbage", {"type": "heartbeat"}]
    rec = Recorder()
    conn = rec.connection(stream_service.url)
    await conn.connect()
    await conn.send({})

    await rec.wait_for_messages(1)
    assert len(rec.errors) == 1
    assert isinstance(rec.errors[0], DecodeError)
    assert conn.is_connected
    await conn.close()


# ── State machine ─────────────────────────────────────────────────


async def test_send_before_connect_fails_fast():
    conn = Recorder().connection("ws://127.0.0.1:1/api/v1/event/ws/stream")
    with pytest.raises(NotConnectedError, match="websocket not connected"):
        await conn.send({"fromBlock": 1})


async def test_send_after_close_fails_fast(stream_service):
    conn = Recorder().connection(stream_service.url)
    await conn.connect()
    await conn.close()

    with pytest.raises(NotConnectedError):
        await conn.send({"fromBlock": 1})


async def test_close_is_idempotent(stream_service):
    rec = Recorder()
    conn = rec.connection(stream_service.url)
    await conn.connect()

    await conn.close()
    await conn.close()

    assert conn.state is ConnectionState.CLOSED
    assert rec.closes <= 1
    assert rec.errors == []


async def test_connect_twice_rejected(stream_service):
    conn = Recorder().connection(stream_service.url)
    await conn.connect()
    try:
        with pytest.raises(ConnectionStateError):
            await conn.connect()
    finally:
        await conn.close()


async def test_connect_refused_is_transport_error():
    conn = Recorder().connection(f"ws://127.0.0.1:{unused_port()}/api/v1/event/ws/stream")
    with pytest.raises(TransportError):
        await conn.connect()
    assert conn.state is ConnectionState.DISCONNECTED


# ── Server-initiated close ────────────────────────────────────────


async def test_normal_close_notifies_once_without_error(stream_service):
    stream_service.close_code = WSCloseCode.OK
    rec = Recorder()
    conn = rec.connection(stream_service.url)
    await conn.connect()
    await conn.send({})

    await asyncio.wait_for(rec.closed.wait(), 2.0)
    await conn.wait_closed()

    assert rec.closes == 1
    assert rec.errors == []
    assert conn.state is ConnectionState.CLOSED
    await conn.close()
    assert rec.closes == 1


async def test_unexpected_close_reported(stream_service):
    stream_service.close_code = WSCloseCode.INTERNAL_ERROR
    rec = Recorder()
    conn = rec.connection(stream_service.url)
    await conn.connect()
    await conn.send({})

    await asyncio.wait_for(rec.closed.wait(), 2.0)

    assert len(rec.errors) == 1
    assert isinstance(rec.errors[0], ConnectionClosedError)
    assert rec.errors[0].code == WSCloseCode.INTERNAL_ERROR
    assert rec.closes == 1

    with pytest.raises(NotConnectedError):
        await conn.send({})
    await conn.close()


# ── Keepalive ─────────────────────────────────────────────────────


async def test_keepalive_pings_keep_connection_open(stream_service):
    rec = Recorder()
    conn = rec.connection(stream_service.url, ping_interval=0.02)
    await conn.connect()
    await conn.send({})

    await asyncio.sleep(0.15)

    assert conn.is_connected
    assert rec.errors == []
    await conn.close()


async def test_failed_ping_reported_and_stops_keepalive(stream_service, monkeypatch):
    pings = 0

    async def broken_ping(self, message=b""):
        nonlocal pings
        pings += 1
        raise ConnectionResetError("Cannot write to closing transport")

    monkeypatch.setattr(ClientWebSocketResponse, "ping", broken_ping)
    rec = Recorder()
    conn = rec.connection(stream_service.url, ping_interval=0.02)
    await conn.connect()
    await conn.send({})

    await asyncio.sleep(0.15)

    assert pings == 1
    assert len(rec.errors) == 1
    assert isinstance(rec.errors[0], TransportError)
    assert "ping failed" in str(rec.errors[0])
    await conn.close()

"""StreamClient end to end: subscribe, dispatch, end, reconnect."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import WSCloseCode
from aiohttp.test_utils import unused_port

from contract_feed.errors import ServerError, TransportError
from contract_feed.models.config import ReconnectConfig
from contract_feed.models.stream import StreamRequest
from contract_feed.stream.client import StreamClient
from contract_feed.stream.connection import StreamConnection

from tests.factories import make_event_dict
from tests.mocks import RecordingConsumer


def make_client(url, consumer, **kwargs) -> StreamClient:
    request = kwargs.pop("request", StreamRequest(from_block=100, to_block=200, address="0xabc"))
    return StreamClient(url, request, consumer, handshake_timeout=2.0, **kwargs)


# ── Subscription ──────────────────────────────────────────────────


async def test_subscription_request_sent(stream_service, consumer):
    client = make_client(stream_service.url, consumer)
    async with client:
        await stream_service.wait_for_requests(1)

    assert stream_service.requests == [{"fromBlock": 100, "toBlock": 200, "address": "0xabc"}]


async def test_empty_request_fields_omitted(stream_service, consumer):
    client = make_client(stream_service.url, consumer, request=StreamRequest())
    async with client:
        await stream_service.wait_for_requests(1)

    assert stream_service.requests == [{}]


# ── Dispatch ──────────────────────────────────────────────────────


async def test_backfill_then_live_events(stream_service, consumer):
    stream_service.script = [
        {"type": "events", "page": 1, "total": 3, "data": [make_event_dict(id=1), make_event_dict(id=2)]},
        {"type": "events", "page": 2, "total": 3, "data": [make_event_dict(id=3)]},
        {"type": "new_event", "data": make_event_dict(id=4, block_number=300)},
    ]
    client = make_client(stream_service.url, consumer)
    async with client:
        await consumer.wait_for_batches(3)

    assert [e.id for e in consumer.events] == [1, 2, 3, 4]
    assert [b.page for b in consumer.batches] == [1, 2, 0]
    assert consumer.batches[2].is_live


async def test_error_frame_keeps_connection_open(stream_service, consumer):
    stream_service.script = [{"type": "error", "message": "rate limited"}]
    client = make_client(stream_service.url, consumer)
    async with client:
        await consumer.wait_for_errors(1)
        await asyncio.sleep(0.05)

        assert len(consumer.errors) == 1
        assert isinstance(consumer.errors[0], ServerError)
        assert "rate limited" in str(consumer.errors[0])
        assert client.connection.is_connected
        assert client.is_running


async def test_end_frame_stops_processing(stream_service, consumer):
    stream_service.script = [
        {"type": "events", "page": 1, "total": 1, "data": [make_event_dict(id=1)]},
        {"type": "end", "message": "backfill complete"},
        {"type": "new_event", "data": make_event_dict(id=2)},
    ]
    client = make_client(stream_service.url, consumer)
    await client.start()
    await asyncio.wait_for(client.wait(), 2.0)

    assert client.ended
    assert [e.id for e in consumer.events] == [1]
    assert consumer.errors == []
    await client.stop()


async def test_user_send_reaches_server(stream_service, consumer):
    client = make_client(stream_service.url, consumer)
    async with client:
        await stream_service.wait_for_requests(1)
        await client.send({"ping": "hello"})

        async def _poll():
            while not stream_service.messages:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), 2.0)

    assert stream_service.messages == ['{"ping": "hello"}']


async def test_send_before_start_fails(consumer):
    client = make_client("ws://127.0.0.1:1/api/v1/event/ws/stream", consumer)
    with pytest.raises(TransportError):
        await client.send({})


# ── Disconnects ───────────────────────────────────────────────────


async def test_disconnect_without_reconnect_finishes(stream_service, consumer):
    stream_service.close_code = WSCloseCode.INTERNAL_ERROR
    client = make_client(stream_service.url, consumer)
    await client.start()

    await asyncio.wait_for(client.wait(), 2.0)

    assert not client.ended
    assert client.reconnects == 0
    assert len(consumer.errors) == 1
    await client.stop()


async def test_reconnect_resubscribes(stream_service, consumer):
    stream_service.close_code = WSCloseCode.INTERNAL_ERROR
    stream_service.close_connections = 1
    client = make_client(
        stream_service.url,
        consumer,
        reconnect=ReconnectConfig(enabled=True, max_retries=3, retry_interval=0.01),
    )
    async with client:
        await stream_service.wait_for_requests(2)

        async def _poll():
            while client.reconnects < 1:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), 2.0)
        assert client.is_running
        assert client.connection.is_connected

    assert stream_service.connections == 2
    assert stream_service.requests[0] == stream_service.requests[1]


async def test_connect_failure_raises(consumer):
    client = make_client(f"ws://127.0.0.1:{unused_port()}/api/v1/event/ws/stream", consumer)
    with pytest.raises(TransportError):
        await client.start()


async def test_failed_subscription_does_not_reconnect(stream_service, consumer, monkeypatch):
    async def broken_send(self, payload):
        raise TransportError("send failed: broken pipe")

    monkeypatch.setattr(StreamConnection, "send", broken_send)
    client = make_client(
        stream_service.url,
        consumer,
        reconnect=ReconnectConfig(enabled=True, max_retries=3, retry_interval=0.01),
    )

    with pytest.raises(TransportError):
        await client.start()
    await asyncio.sleep(0.1)

    assert stream_service.connections == 1
    assert client.connection is None
    assert client.reconnects == 0


async def test_reconnects_exhausted_report_and_finish(stream_service, consumer, monkeypatch):
    stream_service.close_code = WSCloseCode.INTERNAL_ERROR
    stream_service.close_connections = 1
    original_send = StreamConnection.send
    sends = 0

    async def send_once(self, payload):
        nonlocal sends
        sends += 1
        if sends > 1:
            raise TransportError("send failed: broken pipe")
        await original_send(self, payload)

    monkeypatch.setattr(StreamConnection, "send", send_once)
    client = make_client(
        stream_service.url,
        consumer,
        reconnect=ReconnectConfig(enabled=True, max_retries=3, retry_interval=0.01),
    )
    await client.start()

    await asyncio.wait_for(client.wait(), 2.0)
    await asyncio.sleep(0.05)

    # One subscribed connection, then one per failed attempt and no more.
    assert stream_service.connections == 4
    assert sends == 4
    assert client.reconnects == 0
    assert isinstance(consumer.errors[-1], TransportError)
    assert "reconnect failed after 3 attempts" in str(consumer.errors[-1])
    await client.stop()

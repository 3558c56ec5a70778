"""Push-mode models: tagged stream frames, subscription request, connection state."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from contract_feed.errors import DecodeError, ProtocolError


class MessageType(str, Enum):
    """Tag carried by every frame on the event stream."""

    EVENTS = "events"  # paged backfill batch
    NEW_EVENT = "new_event"  # single live event
    ERROR = "error"
    END = "end"
    HEARTBEAT = "heartbeat"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class StreamMessage:
    """One decoded stream frame. ``data`` keeps the raw decoded JSON payload."""

    type: MessageType
    message: str = ""
    data: Any = None
    page: int = 0
    total: int = 0

    @classmethod
    def from_json(cls, raw: str | bytes) -> StreamMessage:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"parse message failed: {exc}") from exc
        if not isinstance(frame, dict):
            raise DecodeError(f"frame must be an object, got {type(frame).__name__}")
        return cls.from_dict(frame)

    @classmethod
    def from_dict(cls, frame: dict[str, Any]) -> StreamMessage:
        tag = frame.get("type")
        if not tag:
            raise ProtocolError("frame is missing 'type'")
        try:
            msg_type = MessageType(tag)
        except ValueError as exc:
            raise ProtocolError(f"unknown message type: {tag!r}") from exc
        try:
            page = int(frame.get("page") or 0)
            total = int(frame.get("total") or 0)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"malformed pagination fields: {exc}") from exc
        return cls(
            type=msg_type,
            message=str(frame.get("message") or ""),
            data=frame.get("data"),
            page=page,
            total=total,
        )


@dataclass(frozen=True)
class StreamRequest:
    """Subscription request sent right after the stream connects."""

    from_block: int | None = None
    to_block: int | None = None
    address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.from_block:
            body["fromBlock"] = self.from_block
        if self.to_block:
            body["toBlock"] = self.to_block
        if self.address:
            body["address"] = self.address
        return body

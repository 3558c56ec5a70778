"""Data models for contract_feed."""

from contract_feed.models.events import Event, decode_events
from contract_feed.models.page import Cursor, EventBatch, Page, ScanMeta
from contract_feed.models.stream import (
    ConnectionState,
    MessageType,
    StreamMessage,
    StreamRequest,
)
from contract_feed.models.config import FeedConfig, FeedMode, ReconnectConfig
from contract_feed.models.records import ActivityRecord, ProgressRecord

__all__ = [
    "Event", "decode_events",
    "Cursor", "EventBatch", "Page", "ScanMeta",
    "ConnectionState", "MessageType", "StreamMessage", "StreamRequest",
    "FeedConfig", "FeedMode", "ReconnectConfig",
    "ActivityRecord", "ProgressRecord",
]

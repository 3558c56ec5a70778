"""Configuration models for the event feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit, urlunsplit


class FeedMode(str, Enum):
    """Delivery strategy for a subscription."""

    POLL = "poll"  # paginated HTTP backfill driven by a block cursor
    STREAM = "stream"  # persistent WebSocket subscription


@dataclass
class ReconnectConfig:
    """Stream reconnection policy. Off unless explicitly enabled."""

    enabled: bool = False
    max_retries: int = 5
    retry_interval: float = 1.0  # seconds, grows linearly per attempt


@dataclass
class FeedConfig:
    """Complete feed configuration."""

    # Feed
    mode: FeedMode = FeedMode.POLL
    log_level: str = "info"

    # HTTP (pull mode)
    base_url: str = "http://127.0.0.1:8080"
    request_timeout: float = 5.0  # seconds
    poll_interval: float = 5.0  # seconds between fetch cycles
    page_size: int = 100  # events per page
    window_span: int = 10  # blocks added to from_block to form to_block
    max_attempts: int = 3
    retry_backoff: float = 1.0  # seconds, multiplied by the attempt index
    flow_control: bool = False

    # Filter
    from_block: int = 0
    to_block: int | None = None  # stream mode only
    address: str | None = None
    event_names: list[str] = field(default_factory=list)

    # Stream (push mode)
    stream_url: str = ""  # derived from base_url when empty
    ping_interval: float = 30.0
    handshake_timeout: float = 45.0
    buffer_size: int = 100
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    # Storage
    db_path: str = "~/.contract_feed/progress.db"

    def effective_stream_url(self) -> str:
        if self.stream_url:
            return self.stream_url
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = parts.path.rstrip("/") + "/api/v1/event/ws/stream"
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    def validate(self) -> None:
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.window_span <= 0:
            raise ValueError(f"window_span must be positive, got {self.window_span}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.ping_interval <= 0:
            raise ValueError(f"ping_interval must be positive, got {self.ping_interval}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.buffer_size < 0:
            raise ValueError(f"buffer_size must not be negative, got {self.buffer_size}")

"""ProgressStore protocol - persists pull-subscription progress for resumption."""

from __future__ import annotations

from typing import Protocol

from contract_feed.models.page import Cursor, ScanMeta
from contract_feed.models.records import ActivityRecord, ProgressRecord


class ProgressStore(Protocol):
    """Persists where each pull subscription should resume."""

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    async def get_progress(self, key: str) -> ProgressRecord | None:
        ...

    async def save_progress(self, key: str, cursor: Cursor, meta: ScanMeta) -> None:
        """Record the next cursor to fetch and the scan progress that led to it."""
        ...

    async def list_progress(self) -> list[ProgressRecord]:
        ...

    async def log_activity(self, kind: str, message: str, key: str | None = None) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...

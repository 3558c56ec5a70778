"""Persisted record types for subscription progress and activity."""

from __future__ import annotations

from dataclasses import dataclass

from contract_feed.models.page import Cursor


@dataclass
class ProgressRecord:
    """Where a pull subscription should resume: the next window to fetch."""

    key: str
    from_block: int
    to_block: int
    page_number: int
    scan_latest_block_number: int
    scan_latest_block_completed: bool
    updated_at: str = ""

    def to_cursor(
        self,
        page_size: int,
        address: str | None = None,
        event_names: list[str] | None = None,
    ) -> Cursor:
        return Cursor(
            from_block=self.from_block,
            to_block=self.to_block,
            page_number=self.page_number,
            page_size=page_size,
            address=address,
            event_names=list(event_names or []),
        )


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    kind: str
    key: str | None
    message: str
    created_at: str

"""Pull-mode models: the scan cursor, fetched pages and delivery batches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from contract_feed.errors import DecodeError
from contract_feed.models.events import Event, decode_events


@dataclass
class Cursor:
    """Block window plus page position driving an incremental backfill.

    Mutated only by the CursorScanner between fetch cycles. While a window
    is being paged through only ``page_number`` moves; once it is exhausted
    the window shifts forward and paging restarts at 1.
    """

    from_block: int
    to_block: int
    page_number: int = 1
    page_size: int = 100
    address: str | None = None
    event_names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.to_block < self.from_block:
            raise ValueError(
                f"Invalid window: to_block ({self.to_block}) < from_block ({self.from_block})"
            )
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {self.page_number}")

    @classmethod
    def starting_at(
        cls,
        from_block: int,
        window_span: int,
        page_size: int,
        address: str | None = None,
        event_names: list[str] | None = None,
    ) -> Cursor:
        return cls(
            from_block=from_block,
            to_block=from_block + window_span,
            page_number=1,
            page_size=page_size,
            address=address,
            event_names=list(event_names or []),
        )

    @property
    def window(self) -> tuple[int, int, int]:
        """The (from_block, to_block, page_number) triple identifying a fetch."""
        return (self.from_block, self.to_block, self.page_number)

    def next_page(self) -> None:
        self.page_number += 1

    def advance(self, window_span: int) -> None:
        """Move past the exhausted window: from = to + 1, to = from + span."""
        self.from_block = self.to_block + 1
        self.to_block = self.from_block + window_span
        self.page_number = 1

    def to_request(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "fromBlock": self.from_block,
            "toBlock": self.to_block,
            "eventNames": list(self.event_names),
            "pageNumber": self.page_number,
            "pageSize": self.page_size,
        }
        if self.address:
            body["address"] = self.address
        return body


@dataclass
class Page:
    """One page of results from ``/api/v1/event/list``."""

    page: int
    size: int
    total: int
    events: list[Event] = field(default_factory=list)
    latest_block_number: int | None = None  # chain head, when reported inline

    @classmethod
    def from_dict(cls, data: Any) -> Page:
        if data is None:
            # Envelope without data: nothing left in this window.
            return cls(page=0, size=0, total=0)
        if not isinstance(data, dict):
            raise DecodeError(f"page must be an object, got {type(data).__name__}")
        try:
            latest = data.get("latestBlockNumber")
            return cls(
                page=int(data.get("page") or 0),
                size=int(data.get("size") or 0),
                total=int(data.get("total") or 0),
                events=decode_events(data.get("data")),
                latest_block_number=int(latest) if latest is not None else None,
            )
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"malformed page: {exc}") from exc


@dataclass(frozen=True)
class ScanMeta:
    """Progress attached to a pull-mode batch so consumers can resume."""

    scan_latest_block_number: int
    scan_latest_block_completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanLatestBlockNumber": self.scan_latest_block_number,
            "scanLatestBlockCompleted": self.scan_latest_block_completed,
        }


@dataclass
class EventBatch:
    """A unit of delivery to the consumer.

    Live single events from the stream carry ``page=0, total=0`` and no
    ``meta``: they are not part of a paginated backfill.
    """

    events: list[Event]
    page: int = 0
    total: int = 0
    meta: ScanMeta | None = None
    window: tuple[int, int, int] | None = None  # (from_block, to_block, page_number)

    @property
    def is_live(self) -> bool:
        return self.page == 0 and self.total == 0 and self.meta is None

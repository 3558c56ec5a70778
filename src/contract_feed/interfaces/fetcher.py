"""EventFetcher protocol - one resilient request/response round trip per call."""

from __future__ import annotations

from typing import Protocol

from contract_feed.models.page import Cursor, Page


class EventFetcher(Protocol):
    """Fetches pages and the chain head from the indexing service."""

    async def fetch_page(self, cursor: Cursor) -> Page:
        """Fetch the page the cursor points at. Raises ContractFeedError."""
        ...

    async def latest_block_number(self) -> int:
        """Return the most recent block the service has indexed."""
        ...

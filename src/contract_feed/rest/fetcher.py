"""Retrying HTTP fetcher for the event indexing service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

import httpx

from contract_feed.errors import (
    ApplicationError,
    ContractFeedError,
    DecodeError,
    RetriesExhaustedError,
    TransportError,
)
from contract_feed.models.page import Cursor, Page
from contract_feed.rest.retry import RetryAction, RetryPolicy

log = logging.getLogger(__name__)

EVENT_LIST_PATH = "/api/v1/event/list"
LATEST_BLOCK_PATH = "/api/v1/event/latestBlockNumber"

_SUCCESS_CODES = (0, 200)

T = TypeVar("T")


def _decode_head(data: Any) -> int:
    if not isinstance(data, dict) or "latestBlockNumber" not in data:
        raise DecodeError("response is missing data.latestBlockNumber")
    value = data["latestBlockNumber"]
    if isinstance(value, bool):
        raise DecodeError("latestBlockNumber is not an integer: got bool")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"latestBlockNumber is not an integer: {exc}") from exc


class RetryingFetcher:
    """Wraps each request/response round trip with bounded retry and backoff.

    Stateless across calls: it owns no cursor. Every call either returns a
    decoded result or raises a classified ContractFeedError:

    - terminal ApplicationError, unchanged, after a single attempt
    - RetriesExhaustedError once all attempts failed (chained from the last error)
    """

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 5.0,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._policy = policy or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout),
            headers={"Accept": "application/json"},
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RetryingFetcher:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── Endpoints ──────────────────────────────────────────

    async def fetch_page(self, cursor: Cursor) -> Page:
        """POST the cursor's query and decode the returned page."""
        return await self._call("POST", EVENT_LIST_PATH, cursor.to_request(), decode=Page.from_dict)

    async def latest_block_number(self) -> int:
        return await self._call("GET", LATEST_BLOCK_PATH, decode=_decode_head)

    # ── Retry loop ─────────────────────────────────────────

    async def _call(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        decode: Callable[[Any], T],
    ) -> T:
        url = self._url(path)
        last_error: ContractFeedError | None = None

        for attempt in range(self._policy.max_attempts):
            delay = self._policy.delay_before(attempt)
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                return await self._round_trip(method, url, body, decode)
            except ContractFeedError as exc:
                last_error = exc

            action = self._policy.decide(attempt, last_error)
            if action is RetryAction.RETRY:
                log.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    method, path, attempt + 1, self._policy.max_attempts, last_error,
                )
                continue

            if not last_error.retryable:
                log.error("%s %s failed with terminal error: %s", method, path, last_error)
                raise last_error

            attempts = attempt + 1
            log.error("%s %s failed after %d attempts: %s", method, path, attempts, last_error)
            raise RetriesExhaustedError(attempts, last_error) from last_error

        # max_attempts >= 1 is enforced by RetryPolicy, so the loop always returns or raises.
        raise AssertionError("unreachable")

    async def _round_trip(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None,
        decode: Callable[[Any], T],
    ) -> T:
        """One attempt: send, decode the envelope and its data, classify the outcome."""
        try:
            resp = await self._client.request(method, url, json=body)
        except httpx.TimeoutException as exc:
            raise TransportError(f"request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"http request failed: {exc}") from exc

        try:
            envelope = resp.json()
        except ValueError as exc:
            raise DecodeError(
                f"unmarshal response body failed (HTTP {resp.status_code}): {exc}"
            ) from exc
        if not isinstance(envelope, dict):
            raise DecodeError(f"response envelope must be an object, got {type(envelope).__name__}")

        try:
            code = int(envelope.get("code") or 0)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"response code is not an integer: {exc}") from exc
        if code == 0 and resp.status_code >= 400:
            code = resp.status_code

        if code not in _SUCCESS_CODES:
            raise ApplicationError(code, str(envelope.get("message") or ""))

        return decode(envelope.get("data"))

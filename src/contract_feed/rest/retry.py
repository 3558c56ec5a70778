"""Retry policy for fetches: linear backoff and failure classification.

The decision is a pure function of (attempt, error) so it can be tested
without a live endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from contract_feed.errors import ContractFeedError


class RetryAction(str, Enum):
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a delay of ``attempt * backoff`` seconds before each retry."""

    max_attempts: int = 3
    backoff: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff < 0:
            raise ValueError(f"backoff must not be negative, got {self.backoff}")

    def delay_before(self, attempt: int) -> float:
        """Seconds to sleep before the zero-based ``attempt``. First attempt: 0."""
        return attempt * self.backoff if attempt > 0 else 0.0

    def decide(self, attempt: int, error: ContractFeedError) -> RetryAction:
        """Next action after the zero-based ``attempt`` failed with ``error``."""
        if not error.retryable:
            return RetryAction.FAIL
        if attempt + 1 >= self.max_attempts:
            return RetryAction.FAIL
        return RetryAction.RETRY

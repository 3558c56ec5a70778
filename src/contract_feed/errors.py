"""Exception hierarchy for event delivery failures.

Every failure the engine surfaces is a ``ContractFeedError``. The
``retryable`` flag drives the fetcher's retry decision.
"""

from __future__ import annotations

# Application codes worth another attempt besides the 5xx range.
RETRYABLE_CODES = frozenset({429, 503, 504})


def is_retryable_code(code: int) -> bool:
    """Return True for service codes that warrant a retry (5xx, 429, 503, 504)."""
    return 500 <= code < 600 or code in RETRYABLE_CODES


class ContractFeedError(Exception):
    """Base class for all contract_feed errors."""

    retryable: bool = False


class TransportError(ContractFeedError):
    """Connection refused, timeout, or a broken read."""

    retryable = True


class DecodeError(ContractFeedError):
    """A payload could not be decoded into the expected shape."""

    retryable = True


class ApplicationError(ContractFeedError):
    """The service answered with a non-success application code."""

    def __init__(self, code: int, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"service error {code}: {message}" if message else f"service error {code}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return is_retryable_code(self.code)


class RetriesExhaustedError(ContractFeedError):
    """All attempts failed; carries the last observed error."""

    def __init__(self, attempts: int, last_error: ContractFeedError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts: {last_error}")


class ProtocolError(ContractFeedError):
    """Unexpected message tag or a missing required field."""


class ServerError(ContractFeedError):
    """The streaming service reported an error frame."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"server error: {message}")


class ConnectionStateError(ContractFeedError):
    """An operation was attempted in the wrong connection state."""


class NotConnectedError(ConnectionStateError):
    """Send attempted while the stream connection is not open."""

    def __init__(self, message: str = "websocket not connected") -> None:
        super().__init__(message)


class ConnectionClosedError(TransportError):
    """The stream connection closed with an unexpected close code."""

    def __init__(self, code: int | None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"connection closed unexpectedly, code={code}{detail}")

"""Retry policy: backoff schedule and retry/fail classification."""

from __future__ import annotations

import pytest

from contract_feed.errors import (
    ApplicationError,
    DecodeError,
    ProtocolError,
    TransportError,
    is_retryable_code,
)
from contract_feed.rest.retry import RetryAction, RetryPolicy


# ── Backoff schedule ──────────────────────────────────────────────


def test_first_attempt_has_no_delay():
    assert RetryPolicy(backoff=1.0).delay_before(0) == 0.0


def test_delay_grows_linearly():
    policy = RetryPolicy(max_attempts=3, backoff=1.0)
    assert [policy.delay_before(a) for a in range(3)] == [0.0, 1.0, 2.0]


def test_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_policy_rejects_negative_backoff():
    with pytest.raises(ValueError):
        RetryPolicy(backoff=-1)


# ── Classification ────────────────────────────────────────────────


@pytest.mark.parametrize("code", [429, 500, 502, 503, 504, 599])
def test_retryable_codes(code):
    assert is_retryable_code(code)
    assert ApplicationError(code).retryable


@pytest.mark.parametrize("code", [400, 401, 403, 404, 422, 600, 1001])
def test_terminal_codes(code):
    assert not is_retryable_code(code)
    assert not ApplicationError(code).retryable


def test_transport_and_decode_errors_retry():
    policy = RetryPolicy(max_attempts=3)
    assert policy.decide(0, TransportError("refused")) is RetryAction.RETRY
    assert policy.decide(1, DecodeError("bad json")) is RetryAction.RETRY


def test_last_attempt_fails():
    policy = RetryPolicy(max_attempts=3)
    assert policy.decide(2, TransportError("refused")) is RetryAction.FAIL


def test_terminal_error_fails_immediately():
    policy = RetryPolicy(max_attempts=3)
    assert policy.decide(0, ApplicationError(404, "not found")) is RetryAction.FAIL


def test_protocol_error_is_terminal():
    assert RetryPolicy().decide(0, ProtocolError("missing type")) is RetryAction.FAIL


def test_single_attempt_policy_never_retries():
    assert RetryPolicy(max_attempts=1).decide(0, TransportError("x")) is RetryAction.FAIL

"""Pull-mode delivery: retrying HTTP fetcher, cursor scanner, flow control."""

from contract_feed.rest.fetcher import RetryingFetcher
from contract_feed.rest.flow import FlowController
from contract_feed.rest.retry import RetryAction, RetryPolicy
from contract_feed.rest.scanner import CursorScanner

__all__ = [
    "CursorScanner",
    "FlowController",
    "RetryAction",
    "RetryPolicy",
    "RetryingFetcher",
]

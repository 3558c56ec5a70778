"""Protocol interfaces for contract_feed components."""

from contract_feed.interfaces.consumer import EventConsumer
from contract_feed.interfaces.fetcher import EventFetcher
from contract_feed.interfaces.store import ProgressStore

__all__ = ["EventConsumer", "EventFetcher", "ProgressStore"]

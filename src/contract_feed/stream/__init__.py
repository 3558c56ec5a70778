"""Push-mode delivery: persistent connection, dispatcher and stream client."""

from contract_feed.stream.client import StreamClient
from contract_feed.stream.connection import StreamConnection
from contract_feed.stream.dispatcher import MessageDispatcher

__all__ = ["MessageDispatcher", "StreamClient", "StreamConnection"]

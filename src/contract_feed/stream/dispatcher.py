"""Message dispatcher - maps tagged stream frames to consumer callbacks."""

from __future__ import annotations

import logging

from contract_feed.errors import ContractFeedError, ServerError
from contract_feed.interfaces.consumer import EventConsumer
from contract_feed.models.events import Event, decode_events
from contract_feed.models.page import EventBatch
from contract_feed.models.stream import MessageType, StreamMessage

log = logging.getLogger(__name__)


class MessageDispatcher:
    """Invokes the consumer for each decoded StreamMessage.

    ``dispatch`` returns False only for ``end``, which stops consumption
    regardless of its payload. A payload that fails to decode is reported
    through ``on_error`` and does not stop later messages.
    """

    def __init__(self, consumer: EventConsumer) -> None:
        self._consumer = consumer

    async def dispatch(self, message: StreamMessage) -> bool:
        kind = message.type

        if kind is MessageType.END:
            log.info("Stream ended: %s", message.message)
            return False

        if kind is MessageType.HEARTBEAT:
            log.debug("Heartbeat received")
            return True

        if kind is MessageType.ERROR:
            await self._consumer.on_error(ServerError(message.message))
            return True

        try:
            if kind is MessageType.EVENTS:
                batch = EventBatch(
                    events=decode_events(message.data),
                    page=message.page,
                    total=message.total,
                )
            else:
                batch = EventBatch(events=[Event.from_dict(message.data)], page=0, total=0)
        except ContractFeedError as exc:
            log.warning("Failed to decode %s payload: %s", kind.value, exc)
            await self._consumer.on_error(exc)
            return True

        await self._consumer.on_batch(batch)
        return True

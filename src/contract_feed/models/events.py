"""Contract event model as delivered by the indexing service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from contract_feed.errors import DecodeError


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise DecodeError(f"field {key!r} must be an integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"field {key!r} must be an integer, got {value!r}") from exc


def _bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise DecodeError(f"field {key!r} must be a boolean, got {value!r}")
    return value


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Event:
    """One decoded contract log.

    Immutable once received; ownership passes to the consumer on delivery.
    """

    id: int
    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: int
    contract_address: str
    user_address: str = ""
    trade_fee: int = 0
    trade_fee_currency: str = ""
    event_unique_hash: str = ""
    event_name: str = ""
    event_signature: str = ""
    topics: tuple[str, ...] = field(default_factory=tuple)
    data: str = ""
    removed: bool = False
    created_at: str = ""  # ISO 8601, as sent by the service
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Decode the camelCase wire shape. Raises DecodeError on bad input."""
        if not isinstance(data, dict):
            raise DecodeError(f"event must be an object, got {type(data).__name__}")

        topics = data.get("topics") or []
        if not isinstance(topics, list):
            raise DecodeError("field 'topics' must be a list")

        return cls(
            id=_int(data, "id"),
            block_number=_int(data, "blockNumber"),
            block_hash=_str(data, "blockHash"),
            transaction_hash=_str(data, "transactionHash"),
            transaction_index=_int(data, "transactionIndex"),
            log_index=_int(data, "logIndex"),
            contract_address=_str(data, "contractAddress"),
            user_address=_str(data, "userAddress"),
            trade_fee=_int(data, "tradeFee"),
            trade_fee_currency=_str(data, "tradeFeeCurrency"),
            event_unique_hash=_str(data, "eventUniqueHash"),
            event_name=_str(data, "eventName"),
            event_signature=_str(data, "eventSignature"),
            topics=tuple(str(t) for t in topics),
            data=_str(data, "data"),
            removed=_bool(data, "removed"),
            created_at=_str(data, "createdAt"),
            updated_at=_str(data, "updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "blockNumber": self.block_number,
            "blockHash": self.block_hash,
            "transactionHash": self.transaction_hash,
            "transactionIndex": self.transaction_index,
            "logIndex": self.log_index,
            "contractAddress": self.contract_address,
            "userAddress": self.user_address,
            "tradeFee": self.trade_fee,
            "tradeFeeCurrency": self.trade_fee_currency,
            "eventUniqueHash": self.event_unique_hash,
            "eventName": self.event_name,
            "eventSignature": self.event_signature,
            "topics": list(self.topics),
            "data": self.data,
            "removed": self.removed,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def decode_events(data: Any) -> list[Event]:
    """Decode a JSON array of events (``null`` decodes as empty)."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise DecodeError(f"event list must be an array, got {type(data).__name__}")
    return [Event.from_dict(item) for item in data]

"""
Broadcast Adapter Interface

Abstract base class for delivering bracket events to observers.
The database stays the source of truth; adapters only deliver.
"""
import abc
import json
import hashlib
from typing import Dict, Any


class BroadcastAdapter(abc.ABC):
    """
    Abstract base class for broadcast adapters.

    Guarantees:
    - Deterministic message serialization (sort_keys=True)
    - Idempotent delivery (event_sequence + event_hash)
    - Delivery-only (never consulted for bracket state)
    """

    REQUIRED_FIELDS = ("event", "event_sequence", "event_hash", "tournament_id")

    @abc.abstractmethod
    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Publish message to channel.

        Args:
            channel: Channel name (e.g., "tournament:42")
            message: Event message (must contain the REQUIRED_FIELDS)
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(self, channel: str):
        """Subscribe to channel and yield parsed messages."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    def serialize_message(self, message: Dict[str, Any]) -> str:
        """Compact JSON with sorted keys. Datetimes go through str()."""
        return json.dumps(message, sort_keys=True, separators=(',', ':'), default=str)

    def compute_message_hash(self, message: Dict[str, Any]) -> str:
        """SHA256 hex digest of the serialized message."""
        serialized = self.serialize_message(message)
        return hashlib.sha256(serialized.encode()).hexdigest()

    def validate_message(self, message: Dict[str, Any]) -> bool:
        """
        Validate message has required fields for idempotency.

        Raises:
            ValueError: If required fields missing
        """
        missing = [f for f in self.REQUIRED_FIELDS if f not in message]
        if missing:
            raise ValueError(f"Message missing required fields: {missing}")
        return True

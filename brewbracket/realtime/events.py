"""
Bracket event notifier

After each committed state change the engine emits a named event on
channel "tournament:<id>". Delivery is best-effort: a failed publish is
logged and never undoes the change that triggered it.
"""
import logging
from typing import Any, Dict, Optional

from brewbracket.config.settings import settings
from brewbracket.realtime.broadcast_adapter import BroadcastAdapter
from brewbracket.realtime.in_memory_adapter import InMemoryAdapter

logger = logging.getLogger(__name__)


class BracketEvent:
    BRACKET_GENERATED = "bracket:generated"
    HEAT_STARTED = "heat:started"
    SEGMENT_STARTED = "segment:started"
    SEGMENT_ENDED = "segment:ended"
    HEAT_COMPLETED = "heat:completed"
    ROUND_COMPLETED = "round:completed"
    NEXT_ROUND_POPULATED = "next-round:populated"
    TOURNAMENT_FINALIZED = "tournament:finalized"


def tournament_channel(tournament_id: int) -> str:
    return f"tournament:{tournament_id}"


class EventNotifier:
    """
    Emits sequenced, hashed bracket events through a BroadcastAdapter.

    event_sequence is per tournament and strictly increasing within
    this notifier.
    """

    def __init__(self, adapter: Optional[BroadcastAdapter] = None, enabled: Optional[bool] = None):
        self.adapter = adapter or InMemoryAdapter()
        self.enabled = settings.FEATURE_EVENT_BROADCAST if enabled is None else enabled
        self._sequences: Dict[int, int] = {}

    def _next_sequence(self, tournament_id: int) -> int:
        sequence = self._sequences.get(tournament_id, 0) + 1
        self._sequences[tournament_id] = sequence
        return sequence

    async def emit(
        self,
        event: str,
        tournament_id: int,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Publish one event. Returns the message, or None if not delivered."""
        if not self.enabled:
            return None

        message = {
            "event": event,
            "tournament_id": tournament_id,
            "event_sequence": self._next_sequence(tournament_id),
            "payload": payload or {},
        }
        message["event_hash"] = self.adapter.compute_message_hash(message)

        try:
            await self.adapter.publish(tournament_channel(tournament_id), message)
        except Exception as e:
            logger.warning(f"Failed to publish {event} for tournament {tournament_id}: {str(e)}")
            return None

        logger.debug(f"Emitted {event} #{message['event_sequence']} for tournament {tournament_id}")
        return message


_notifier: Optional[EventNotifier] = None


def get_notifier() -> EventNotifier:
    """Process-wide notifier used when a service is not handed one."""
    global _notifier
    if _notifier is None:
        _notifier = EventNotifier()
    return _notifier


def set_notifier(notifier: Optional[EventNotifier]) -> None:
    global _notifier
    _notifier = notifier

"""
In-Memory Broadcast Adapter

Local-only event delivery using asyncio.Queue, plus a bounded per-channel
history so late observers can read what was already published.
"""
import asyncio
import json
from collections import deque
from typing import Deque, Dict, Any, List, Set

from .broadcast_adapter import BroadcastAdapter


class InMemoryAdapter(BroadcastAdapter):
    """
    In-memory broadcast adapter for development and tests.

    Deterministic and idempotent like a networked adapter.
    """

    def __init__(self, queue_size: int = 100, history_size: int = 500):
        self._channels: Dict[str, Set[asyncio.Queue]] = {}
        self._history: Dict[str, Deque[str]] = {}
        self._queue_size = queue_size
        self._history_size = history_size
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.validate_message(message)
        serialized = self.serialize_message(message)

        async with self._lock:
            history = self._history.setdefault(channel, deque(maxlen=self._history_size))
            history.append(serialized)
            for queue in list(self._channels.get(channel, ())):
                try:
                    queue.put_nowait(serialized)
                except asyncio.QueueFull:
                    # Slow subscriber: drop, history still has it
                    pass

    async def subscribe(self, channel: str):
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._channels.setdefault(channel, set()).add(queue)

        try:
            while True:
                serialized = await queue.get()
                if serialized is None:
                    return
                yield json.loads(serialized)
        finally:
            async with self._lock:
                if channel in self._channels:
                    self._channels[channel].discard(queue)

    def history(self, channel: str) -> List[Dict[str, Any]]:
        """Messages published to channel, oldest first."""
        return [json.loads(item) for item in self._history.get(channel, ())]

    async def close(self) -> None:
        async with self._lock:
            for queues in self._channels.values():
                for queue in queues:
                    try:
                        queue.put_nowait(None)  # Signal shutdown
                    except asyncio.QueueFull:
                        pass
            self._channels.clear()

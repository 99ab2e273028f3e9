"""In-memory registry of active giveaways."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Dict, Optional, Tuple

from .models import Giveaway


class DuplicateGiveawayError(ValueError):
    """Raised when a giveaway with the same channel and message already exists."""


class GiveawayRegistry:
    """Authoritative set of active giveaways.

    Every read and write goes through a single lock so a tick never observes a
    half-registered giveaway. Callers must not hold the lock across network calls;
    all methods copy out what they need and release it.
    """

    def __init__(self, *, history_size: int = 100) -> None:
        self._active: Dict[Tuple[int, int], Giveaway] = {}
        self._ended: "OrderedDict[int, Giveaway]" = OrderedDict()
        self._history_size = history_size
        self._lock = asyncio.Lock()

    async def add(self, giveaway: Giveaway) -> None:
        async with self._lock:
            if giveaway.key in self._active:
                raise DuplicateGiveawayError(
                    f"Giveaway for message {giveaway.message_id} in channel "
                    f"{giveaway.channel_id} is already registered."
                )
            self._active[giveaway.key] = giveaway

    async def remove(self, giveaway: Giveaway) -> bool:
        """Remove a giveaway, returning True only if this call removed it."""
        async with self._lock:
            current = self._active.get(giveaway.key)
            if current is not giveaway:
                return False
            del self._active[giveaway.key]
            return True

    async def snapshot(self) -> Tuple[Giveaway, ...]:
        async with self._lock:
            return tuple(self._active.values())

    async def find(self, channel_id: int, message_id: int) -> Optional[Giveaway]:
        async with self._lock:
            return self._active.get((channel_id, message_id))

    async def find_by_message(self, message_id: int) -> Optional[Giveaway]:
        async with self._lock:
            for giveaway in self._active.values():
                if giveaway.message_id == message_id:
                    return giveaway
            return None

    async def remember_ended(self, giveaway: Giveaway) -> None:
        async with self._lock:
            self._ended.pop(giveaway.message_id, None)
            self._ended[giveaway.message_id] = giveaway
            while len(self._ended) > self._history_size:
                self._ended.popitem(last=False)

    async def find_ended(self, message_id: int) -> Optional[Giveaway]:
        async with self._lock:
            return self._ended.get(message_id)

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, giveaway: object) -> bool:
        if not isinstance(giveaway, Giveaway):
            return False
        return self._active.get(giveaway.key) is giveaway

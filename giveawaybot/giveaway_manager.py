from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .clock import Clock, SystemClock
from .formatting import render_active, render_ended, render_result
from .messaging import MessageNotFound, Messenger, TransportError
from .models import Giveaway, GiveawayStatus
from .registry import DuplicateGiveawayError, GiveawayRegistry
from .scheduler import TaskScheduler, TimerHandle
from .selection import select_winners
from .storage import PersistenceError, SnapshotStore

log = logging.getLogger(__name__)

END_MARGIN = timedelta(seconds=1)
FINAL_COUNTDOWN = timedelta(seconds=5)
WARMUP = timedelta(minutes=5)


def should_render(now: datetime, end_time: datetime, tick: int) -> bool:
    """Status cadence: every tick in the last 5s, every 5th in the last 5min, else every 60th."""
    if now + FINAL_COUNTDOWN > end_time:
        return True
    if now + WARMUP > end_time:
        return tick % 5 == 0
    return tick % 60 == 0


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, and status rendering."""

    def __init__(
        self,
        messenger: Messenger,
        registry: GiveawayRegistry,
        storage: SnapshotStore,
        *,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        exclude_previous_winners: bool = True,
    ) -> None:
        self.messenger = messenger
        self.registry = registry
        self.storage = storage
        self.clock = clock or SystemClock()
        self.exclude_previous_winners = exclude_previous_winners
        self._rng = rng
        self._tick_count = 0
        self._timers: List[TimerHandle] = []

    @property
    def tick_count(self) -> int:
        return self._tick_count

    async def load(self) -> int:
        """Restore giveaways from the snapshot, skipping those whose message is gone."""
        restored = 0
        for giveaway in await self.storage.load():
            try:
                message = await self.messenger.fetch(giveaway.channel_id, giveaway.message_id)
            except TransportError as exc:
                log.warning("Skipping giveaway %s: %s", giveaway.key, exc)
                continue
            if message is None:
                log.warning(
                    "Skipping giveaway %s: announcement message no longer exists.",
                    giveaway.key,
                )
                continue
            try:
                await self.registry.add(giveaway)
            except DuplicateGiveawayError as exc:
                log.warning("Skipping duplicate snapshot entry: %s", exc)
                continue
            restored += 1
        log.info("Restored %d active giveaway(s).", restored)
        return restored

    def schedule(
        self,
        scheduler: TaskScheduler,
        *,
        tick_seconds: float = 1,
        checkpoint_seconds: float = 300,
    ) -> None:
        self._timers = [
            scheduler.call_every(tick_seconds, self.tick, name="giveaway-tick"),
            scheduler.call_every(
                checkpoint_seconds,
                self.checkpoint,
                name="giveaway-checkpoint",
                initial_delay=checkpoint_seconds,
            ),
        ]

    async def shutdown(self) -> None:
        # An in-flight tick may hold giveaways already removed from the registry.
        for timer in self._timers:
            timer.stop()
        for timer in self._timers:
            await timer.wait()
        self._timers = []
        try:
            giveaways = await self.registry.snapshot()
            await self.storage.save(giveaways)
        except Exception:
            log.critical("Failed to save giveaways during shutdown.", exc_info=True)
        else:
            log.info("Saved %d giveaway(s) on shutdown.", len(giveaways))

    async def checkpoint(self) -> bool:
        giveaways = await self.registry.snapshot()
        try:
            await self.storage.save(giveaways)
        except PersistenceError:
            log.exception("Checkpoint failed; %d giveaway(s) not saved.", len(giveaways))
            return False
        log.debug("Checkpointed %d giveaway(s).", len(giveaways))
        return True

    async def start(self, giveaway: Giveaway) -> None:
        await self.registry.add(giveaway)
        log.info(
            "Giveaway %s started with %d winner(s), ending %s.",
            giveaway.key,
            giveaway.winners,
            giveaway.end_time.isoformat(),
        )
        await self._render(giveaway, self.clock.now())

    async def tick(self) -> None:
        now = self.clock.now()
        tick = self._tick_count
        self._tick_count += 1

        to_end: List[Giveaway] = []
        to_render: List[Giveaway] = []
        for giveaway in await self.registry.snapshot():
            if not giveaway.reachable or now + END_MARGIN > giveaway.end_time:
                to_end.append(giveaway)
            elif should_render(now, giveaway.end_time, tick):
                to_render.append(giveaway)

        results = await asyncio.gather(
            *(self._render(giveaway, now) for giveaway in to_render),
            return_exceptions=True,
        )
        for giveaway, result in zip(to_render, results):
            if isinstance(result, Exception):
                log.error("Rendering giveaway %s failed", giveaway.key, exc_info=result)

        for giveaway in to_end:
            await self.end(giveaway)

    async def end(self, giveaway: Giveaway) -> Optional[List[int]]:
        if not await self.registry.remove(giveaway):
            log.debug("Giveaway %s already ended.", giveaway.key)
            return None

        winners = await self._draw(giveaway)
        giveaway.status = GiveawayStatus.ENDED
        giveaway.last_winners = winners
        await self.registry.remember_ended(giveaway)

        if giveaway.reachable:
            await self._safe_edit(giveaway, render_ended(giveaway.prize, winners))
            await self._safe_send(giveaway, render_result(giveaway.prize, winners))
        log.info("Giveaway %s ended with winners %s.", giveaway.key, winners)
        return winners

    async def force_end(self, message_id: int) -> Optional[Giveaway]:
        giveaway = await self.registry.find_by_message(message_id)
        if giveaway is None:
            return None
        await self.end(giveaway)
        return giveaway

    async def reroll(
        self, message_id: int, channel_id: Optional[int] = None
    ) -> Optional[List[int]]:
        if await self.registry.find_by_message(message_id):
            raise RuntimeError("Cannot reroll an active giveaway.")

        giveaway = await self.registry.find_ended(message_id)
        from_history = giveaway is not None
        if giveaway is None:
            if channel_id is None:
                return None
            try:
                message = await self.messenger.fetch(channel_id, message_id)
            except TransportError as exc:
                log.warning("Unable to look up message %s for reroll: %s", message_id, exc)
                return None
            if message is None:
                return None
            giveaway = Giveaway(
                channel_id=channel_id,
                message_id=message_id,
                end_time=self.clock.now(),
                status=GiveawayStatus.ENDED,
            )

        winners = await self._draw(giveaway, previous=giveaway.last_winners)
        giveaway.last_winners = winners
        if from_history and giveaway.reachable:
            await self._safe_edit(giveaway, render_ended(giveaway.prize, winners))
        await self._safe_send(giveaway, render_result(giveaway.prize, winners, reroll=True))
        log.info("Giveaway %s rerolled; winners %s.", giveaway.key, winners)
        return winners

    async def mark_unreachable(self, channel_id: int, message_id: int) -> bool:
        giveaway = await self.registry.find(channel_id, message_id)
        if giveaway is None:
            return False
        giveaway.reachable = False
        log.info("Announcement for giveaway %s was deleted.", giveaway.key)
        return True

    async def _draw(
        self, giveaway: Giveaway, *, previous: Sequence[int] = ()
    ) -> List[int]:
        try:
            entrants = await self.messenger.list_entrants(
                giveaway.channel_id, giveaway.message_id
            )
        except TransportError as exc:
            log.warning("Could not collect entrants for giveaway %s: %s", giveaway.key, exc)
            entrants = set()

        self_id = self.messenger.self_id
        pool = set(entrants)
        if previous and self.exclude_previous_winners:
            # Fall back to the full pool when only previous winners entered.
            remaining = pool.difference(previous)
            remaining.discard(self_id)
            if remaining:
                pool = remaining
        return select_winners(pool, giveaway.winners, self_id, rng=self._rng)

    async def _render(self, giveaway: Giveaway, now: datetime) -> None:
        content = render_active(giveaway.prize, giveaway.winners, giveaway.end_time, now)
        try:
            await self.messenger.edit(giveaway.channel_id, giveaway.message_id, content)
        except MessageNotFound:
            log.warning("Announcement for giveaway %s is gone; ending it.", giveaway.key)
            giveaway.reachable = False
        except TransportError as exc:
            log.warning("Failed to update giveaway %s: %s", giveaway.key, exc)

    async def _safe_edit(self, giveaway: Giveaway, content: str) -> None:
        try:
            await self.messenger.edit(giveaway.channel_id, giveaway.message_id, content)
        except TransportError as exc:
            log.warning("Failed to update announcement of giveaway %s: %s", giveaway.key, exc)

    async def _safe_send(self, giveaway: Giveaway, content: str) -> None:
        try:
            await self.messenger.send(giveaway.channel_id, content)
        except TransportError as exc:
            log.warning("Failed to announce results of giveaway %s: %s", giveaway.key, exc)

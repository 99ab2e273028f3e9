"""Interactive, multi-step giveaway creation."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .clock import Clock, SystemClock
from .formatting import format_duration, render_active
from .giveaway_manager import GiveawayManager
from .messaging import Messenger, TransportError
from .models import ChannelInfo, DialogueSession, DialogueStep, Giveaway, InboundMessage

log = logging.getLogger(__name__)

CHANNEL_MENTION_RE = re.compile(r"^<#?(\d+)>?$")
INTEGER_RE = re.compile(r"^[+-]?\d+$")

MIN_DURATION_SECONDS = 10
MAX_DURATION_SECONDS = 7 * 24 * 60 * 60
MIN_WINNERS = 1
MAX_WINNERS = 15
MAX_PRIZE_LENGTH = 500
CANCEL_KEYWORD = "cancel"

CANCELLED = "\n\n`Giveaway creation has been cancelled.`"
PROMPTS = {
    DialogueStep.AWAIT_CHANNEL: "\n\n`Please type the name of a channel in this server.`",
    DialogueStep.AWAIT_DURATION: (
        "\n\n`Please enter the duration of the giveaway in seconds.`"
        "\n`Alternatively, enter a duration in minutes and include an M at the end.`"
    ),
    DialogueStep.AWAIT_WINNERS: (
        f"\n\n`Please enter a number of winners between {MIN_WINNERS} and {MAX_WINNERS}.`"
    ),
    DialogueStep.AWAIT_PRIZE: (
        "\n\n`Please enter the giveaway prize. This will also begin the giveaway.`"
    ),
}


class InputError(ValueError):
    """A reply that cannot be used for the current step; the step is asked again."""


class DialogueCancelled(Exception):
    """Raised internally when a session ends without creating a giveaway."""


def parse_duration(text: str) -> int:
    """Parse ``90``, ``90S`` or ``2M`` into seconds within the allowed range."""
    value = text.strip().upper()
    multiplier = 1
    if value.endswith("M"):
        multiplier = 60
        value = value[:-1].strip()
    elif value.endswith("S"):
        value = value[:-1].strip()
    if not INTEGER_RE.match(value):
        raise InputError("Hm. I can't seem to get a number from that. Can you try again?")
    seconds = int(value) * multiplier
    if not MIN_DURATION_SECONDS <= seconds <= MAX_DURATION_SECONDS:
        raise InputError(
            f"Giveaways must last between {format_duration(MIN_DURATION_SECONDS)} "
            f"and {format_duration(MAX_DURATION_SECONDS)}. Mind trying again?"
        )
    return seconds


def parse_winner_count(text: str) -> int:
    value = text.strip()
    if not INTEGER_RE.match(value):
        raise InputError("Uh... that doesn't look like a valid number.")
    winners = int(value)
    if not MIN_WINNERS <= winners <= MAX_WINNERS:
        raise InputError(f"I can only support {MIN_WINNERS} to {MAX_WINNERS} winners!")
    return winners


def validate_prize(text: str) -> str:
    if len(text) > MAX_PRIZE_LENGTH:
        raise InputError(
            f"That prize is too long ({len(text)} characters, "
            f"{MAX_PRIZE_LENGTH} allowed). Can you shorten it a bit?"
        )
    return text


def find_text_channels(query: str, channels: Sequence[ChannelInfo]) -> List[ChannelInfo]:
    """Match a channel query, trying mention/ID, exact, case-insensitive, prefix, substring."""
    query = query.strip()
    mention = CHANNEL_MENTION_RE.match(query)
    if mention:
        channel_id = int(mention.group(1))
        by_id = [channel for channel in channels if channel.id == channel_id]
        if by_id:
            return by_id

    base = query.lstrip("#")
    if not base:
        return []
    # Channel names cannot contain spaces; current clients use "-", older ones "_".
    names = (base.replace(" ", "-"), base.replace(" ", "_"))
    lowered = tuple(name.lower() for name in names)
    matchers: Tuple[Callable[[ChannelInfo], bool], ...] = (
        lambda channel: channel.name in names,
        lambda channel: channel.name.lower() in lowered,
        lambda channel: channel.name.lower().startswith(lowered),
        lambda channel: any(name in channel.name.lower() for name in lowered),
    )
    for matcher in matchers:
        found = [channel for channel in channels if matcher(channel)]
        if found:
            return found
    return []


def is_cancel(text: str) -> bool:
    return text.strip().lower() == CANCEL_KEYWORD


@dataclass(slots=True, eq=False)
class _PendingWait:
    predicate: Callable[[InboundMessage], bool]
    future: asyncio.Future


class EventWaiter:
    """Resolves waits on inbound messages by predicate, or by timeout.

    Each wait is settled exactly once: the future is completed either by the
    first matching message or by its deadline, whichever happens first.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self._waiters: List[_PendingWait] = []

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def wait_for(
        self, predicate: Callable[[InboundMessage], bool], timeout: float
    ) -> InboundMessage:
        """Wait for a matching message; raises ``asyncio.TimeoutError`` on expiry."""
        wait = _PendingWait(predicate, asyncio.get_running_loop().create_future())
        self._waiters.append(wait)
        expiry = asyncio.create_task(self._expire(wait.future, timeout))
        try:
            return await wait.future
        finally:
            expiry.cancel()
            if wait in self._waiters:
                self._waiters.remove(wait)

    def dispatch(self, message: InboundMessage) -> bool:
        matched = False
        for wait in list(self._waiters):
            if wait.future.done():
                continue
            try:
                hit = wait.predicate(message)
            except Exception:
                log.exception("Wait predicate failed; treating message as unmatched.")
                continue
            if hit:
                wait.future.set_result(message)
                self._waiters.remove(wait)
                matched = True
        return matched

    async def _expire(self, future: asyncio.Future, timeout: float) -> None:
        await self.clock.sleep(timeout)
        if not future.done():
            future.set_exception(asyncio.TimeoutError())


class CreationDialogue:
    """Walks a user through channel, duration, winners and prize, then starts the giveaway."""

    def __init__(
        self,
        manager: GiveawayManager,
        messenger: Messenger,
        waiter: EventWaiter,
        *,
        clock: Optional[Clock] = None,
        timeout_seconds: float = 120,
    ) -> None:
        self.manager = manager
        self.messenger = messenger
        self.waiter = waiter
        self.clock = clock or SystemClock()
        self.timeout_seconds = timeout_seconds
        self._sessions: Dict[Tuple[int, int], DialogueSession] = {}

    def get_session(self, user_id: int, channel_id: int) -> Optional[DialogueSession]:
        return self._sessions.get((user_id, channel_id))

    async def run(
        self, user_id: int, channel_id: int, guild_id: Optional[int] = None
    ) -> Optional[Giveaway]:
        key = (user_id, channel_id)
        if key in self._sessions:
            await self._reply(
                channel_id,
                f"<@{user_id}>, you are already setting up a giveaway here. "
                "Finish it or type `cancel` first.",
            )
            return None

        session = DialogueSession(user_id=user_id, channel_id=channel_id, guild_id=guild_id)
        self._sessions[key] = session
        log.debug("Creation dialogue started for user %s in channel %s.", user_id, channel_id)
        try:
            await self._reply(
                channel_id,
                "Alright! Let's set up your giveaway! First, what channel do you want "
                "the giveaway in?\nYou can type `cancel` at any time to cancel creation."
                + PROMPTS[DialogueStep.AWAIT_CHANNEL],
            )
            return await self._converse(session)
        except asyncio.TimeoutError:
            log.info("Creation dialogue for user %s timed out at %s.", user_id, session.step.value)
            await self._reply(
                channel_id,
                f"Uh oh! You took longer than {format_duration(int(self.timeout_seconds))} "
                f"to respond, <@{user_id}>!" + CANCELLED,
            )
            return None
        except DialogueCancelled:
            log.info("Creation dialogue for user %s cancelled at %s.", user_id, session.step.value)
            return None
        finally:
            self._sessions.pop(key, None)

    async def _converse(self, session: DialogueSession) -> Optional[Giveaway]:
        while True:
            reply = await self._next_reply(session)
            if is_cancel(reply.content):
                await self._reply(
                    session.channel_id,
                    "Alright, I guess we're not having a giveaway after all..." + CANCELLED,
                )
                raise DialogueCancelled()
            try:
                if session.step is DialogueStep.AWAIT_CHANNEL:
                    await self._accept_channel(session, reply.content)
                elif session.step is DialogueStep.AWAIT_DURATION:
                    session.duration_seconds = parse_duration(reply.content)
                    session.step = DialogueStep.AWAIT_WINNERS
                    await self._reply(
                        session.channel_id,
                        f"Neat! This giveaway will last {format_duration(session.duration_seconds)}! "
                        "Now, how many winners should there be?" + PROMPTS[session.step],
                    )
                elif session.step is DialogueStep.AWAIT_WINNERS:
                    session.winners = parse_winner_count(reply.content)
                    session.step = DialogueStep.AWAIT_PRIZE
                    await self._reply(
                        session.channel_id,
                        f"Ok! {session.winners} winner(s) it is! Finally, what do you want "
                        "to give away?" + PROMPTS[session.step],
                    )
                else:
                    return await self._launch(session, validate_prize(reply.content))
            except InputError as exc:
                await self._reply(session.channel_id, f"{exc}{PROMPTS[session.step]}")

    async def _accept_channel(self, session: DialogueSession, query: str) -> None:
        channels: List[ChannelInfo] = []
        if session.guild_id is not None:
            try:
                channels = await self.messenger.list_text_channels(session.guild_id)
            except TransportError as exc:
                log.warning("Unable to list channels of guild %s: %s", session.guild_id, exc)
        matches = find_text_channels(query, channels)
        if not matches:
            raise InputError(f"Uh oh, I couldn't find any channels called '{query.strip()}'! Try again!")
        if len(matches) > 1:
            raise InputError("Oh... there are multiple channels with that name. Please be more specific!")

        channel = matches[0]
        if not channel.can_post:
            await self._reply(
                session.channel_id,
                f"Erm, I can't read, write, or embed links in {channel.mention}. "
                "Please fix this and then try again." + CANCELLED,
            )
            raise DialogueCancelled()

        session.target_channel_id = channel.id
        session.step = DialogueStep.AWAIT_DURATION
        await self._reply(
            session.channel_id,
            f"Sweet! The giveaway will be in {channel.mention}! Next, how long should "
            "the giveaway last?" + PROMPTS[session.step],
        )

    async def _launch(self, session: DialogueSession, prize: str) -> Optional[Giveaway]:
        if (
            session.target_channel_id is None
            or session.duration_seconds is None
            or session.winners is None
        ):
            raise RuntimeError(
                f"Creation dialogue {session.key} reached the prize step with missing answers."
            )

        now = self.clock.now()
        end_time = now + timedelta(seconds=session.duration_seconds)
        try:
            message_id = await self.messenger.send(
                session.target_channel_id,
                render_active(prize, session.winners, end_time, now),
            )
        except TransportError as exc:
            log.warning(
                "Failed to post giveaway announcement in channel %s: %s",
                session.target_channel_id,
                exc,
            )
            await self._reply(
                session.channel_id,
                "Uh oh. Something went wrong and I wasn't able to start the giveaway." + CANCELLED,
            )
            return None

        try:
            await self.messenger.attach_entry_marker(session.target_channel_id, message_id)
        except TransportError as exc:
            log.warning("Could not add entry reaction to message %s: %s", message_id, exc)

        giveaway = Giveaway(
            channel_id=session.target_channel_id,
            message_id=message_id,
            end_time=end_time,
            winners=session.winners,
            prize=prize,
            guild_id=session.guild_id,
        )
        await self.manager.start(giveaway)
        await self._reply(
            session.channel_id,
            f"Done! The giveaway for `{prize}` is starting in <#{session.target_channel_id}>!",
        )
        return giveaway

    async def _next_reply(self, session: DialogueSession) -> InboundMessage:
        session.deadline = self.clock.now() + timedelta(seconds=self.timeout_seconds)
        return await self.waiter.wait_for(
            lambda message: message.author_id == session.user_id
            and message.channel_id == session.channel_id,
            self.timeout_seconds,
        )

    async def _reply(self, channel_id: int, content: str) -> None:
        try:
            await self.messenger.send(channel_id, content)
        except TransportError as exc:
            log.warning("Failed to send dialogue message to channel %s: %s", channel_id, exc)

"""Data models used for giveaway runtime state and creation dialogues."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple


class GiveawayStatus(enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"


@dataclass(slots=True, eq=False)
class Giveaway:
    """A giveaway identified by the channel and message it was announced in."""
    channel_id: int
    message_id: int
    end_time: datetime
    winners: int = 1
    prize: Optional[str] = None
    guild_id: Optional[int] = None
    status: GiveawayStatus = GiveawayStatus.ACTIVE
    reachable: bool = True
    last_winners: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.winners < 1:
            raise ValueError("winners must be greater than zero")
        if self.end_time.tzinfo is None:
            raise ValueError("end_time must be timezone-aware")

    @property
    def key(self) -> Tuple[int, int]:
        """Identity of the giveaway: (channel_id, message_id)."""
        return (self.channel_id, self.message_id)

    @property
    def is_active(self) -> bool:
        return self.status is GiveawayStatus.ACTIVE

    def seconds_left(self, now: datetime) -> float:
        return (self.end_time - now).total_seconds()


class DialogueStep(enum.Enum):
    AWAIT_CHANNEL = "await_channel"
    AWAIT_DURATION = "await_duration"
    AWAIT_WINNERS = "await_winners"
    AWAIT_PRIZE = "await_prize"


@dataclass(slots=True)
class DialogueSession:
    """In-progress run of the creation wizard for one user in one channel."""
    user_id: int
    channel_id: int
    guild_id: Optional[int] = None
    step: DialogueStep = DialogueStep.AWAIT_CHANNEL
    target_channel_id: Optional[int] = None
    duration_seconds: Optional[int] = None
    winners: Optional[int] = None
    deadline: Optional[datetime] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.user_id, self.channel_id)


@dataclass(slots=True, frozen=True)
class InboundMessage:
    """A chat message delivered to the dialogue waiter."""
    author_id: int
    channel_id: int
    content: str
    guild_id: Optional[int] = None


@dataclass(slots=True, frozen=True)
class ChannelInfo:
    """Text channel as seen by the bot, including whether it may post there."""
    id: int
    name: str
    can_post: bool = True

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"

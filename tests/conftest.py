"""Pytest configuration and fixtures."""

import random

import pytest

from fakes import FakeMessenger, ManualClock
from giveawaybot.dialogue import CreationDialogue, EventWaiter
from giveawaybot.giveaway_manager import GiveawayManager
from giveawaybot.models import ChannelInfo
from giveawaybot.registry import GiveawayRegistry
from giveawaybot.storage import SnapshotStore

GUILD_ID = 100
COMMAND_CHANNEL_ID = 10
GIVEAWAY_CHANNEL_ID = 20


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def messenger():
    fake = FakeMessenger()
    fake.channels[GUILD_ID] = [
        ChannelInfo(id=COMMAND_CHANNEL_ID, name="general"),
        ChannelInfo(id=GIVEAWAY_CHANNEL_ID, name="giveaways"),
        ChannelInfo(id=30, name="giveaway-talk"),
        ChannelInfo(id=40, name="announcements", can_post=False),
        ChannelInfo(id=50, name="off-topic"),
    ]
    return fake


@pytest.fixture
def registry():
    return GiveawayRegistry(history_size=10)


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "giveaways_restart.txt")


@pytest.fixture
def manager(messenger, registry, store, clock):
    return GiveawayManager(
        messenger, registry, store, clock=clock, rng=random.Random(1234)
    )


@pytest.fixture
def waiter(clock):
    return EventWaiter(clock)


@pytest.fixture
def dialogue(manager, messenger, waiter, clock):
    return CreationDialogue(manager, messenger, waiter, clock=clock, timeout_seconds=120)

"""Tests for the interactive creation dialogue."""

import asyncio
from datetime import timedelta

import pytest

from conftest import COMMAND_CHANNEL_ID, GIVEAWAY_CHANNEL_ID, GUILD_ID
from fakes import inbound, settle
from giveawaybot.dialogue import (
    InputError,
    find_text_channels,
    is_cancel,
    parse_duration,
    parse_winner_count,
    validate_prize,
)
from giveawaybot.models import ChannelInfo, DialogueSession, DialogueStep, InboundMessage

USER_ID = 1


async def _open(dialogue):
    task = asyncio.create_task(dialogue.run(USER_ID, COMMAND_CHANNEL_ID, GUILD_ID))
    await settle()
    return task


async def _say(waiter, text, **kwargs):
    matched = waiter.dispatch(inbound(text, **kwargs))
    await settle()
    return matched


def _last_reply(messenger):
    return messenger.sent_to(COMMAND_CHANNEL_ID)[-1]


class TestParsers:
    @pytest.mark.parametrize(
        "text, seconds",
        [("90", 90), ("90S", 90), ("90s", 90), ("2M", 120), ("2m", 120), (" 10 ", 10), ("604800", 604800)],
    )
    def test_duration(self, text, seconds):
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["5", "9", "604801", "0M", "-5", "abc", "", "1.5M", "M"])
    def test_duration_rejected(self, text):
        with pytest.raises(InputError):
            parse_duration(text)

    @pytest.mark.parametrize("text, winners", [("1", 1), ("15", 15), (" 3 ", 3)])
    def test_winner_count(self, text, winners):
        assert parse_winner_count(text) == winners

    @pytest.mark.parametrize("text", ["0", "16", "-1", "two", ""])
    def test_winner_count_rejected(self, text):
        with pytest.raises(InputError):
            parse_winner_count(text)

    def test_prize_length(self):
        assert validate_prize("x" * 500) == "x" * 500
        with pytest.raises(InputError):
            validate_prize("x" * 501)

    @pytest.mark.parametrize("text", ["cancel", "CANCEL", "  Cancel "])
    def test_cancel_keyword(self, text):
        assert is_cancel(text)

    def test_cancel_must_be_whole_reply(self):
        assert not is_cancel("cancel it")


class TestFindTextChannels:
    @pytest.mark.parametrize(
        "query, expected",
        [
            ("giveaways", [20]),
            ("#giveaways", [20]),
            ("<#20>", [20]),
            ("GIVEAWAYS", [20]),
            ("giveaway talk", [30]),
            ("topic", [50]),
            ("giveaway", [20, 30]),
            ("nothing-here", []),
            ("#", []),
        ],
    )
    def test_resolution(self, messenger, query, expected):
        channels = messenger.channels[GUILD_ID]
        assert [channel.id for channel in find_text_channels(query, channels)] == expected

    @pytest.mark.parametrize("query, expected", [("prize pool", [1]), ("event log", [2]), ("Prize Pool", [1])])
    def test_spaces_match_hyphen_or_underscore_names(self, query, expected):
        channels = [ChannelInfo(1, "prize_pool"), ChannelInfo(2, "event-log")]
        assert [c.id for c in find_text_channels(query, channels)] == expected

    def test_exact_name_beats_case_insensitive(self):
        channels = [ChannelInfo(1, "Prizes"), ChannelInfo(2, "prizes")]
        assert [c.id for c in find_text_channels("prizes", channels)] == [2]


class TestEventWaiter:
    @pytest.mark.asyncio
    async def test_first_matching_message_resolves(self, waiter):
        task = asyncio.create_task(waiter.wait_for(lambda m: m.author_id == 2, 10))
        await settle()

        assert waiter.dispatch(inbound("no", author_id=3)) is False
        assert waiter.dispatch(inbound("yes", author_id=2)) is True
        message = await task

        assert message.content == "yes"
        assert waiter.pending == 0

    @pytest.mark.asyncio
    async def test_timeout(self, waiter, clock):
        task = asyncio.create_task(waiter.wait_for(lambda m: True, 10))
        await settle()

        await clock.advance(10)

        with pytest.raises(asyncio.TimeoutError):
            await task
        assert waiter.pending == 0
        assert waiter.dispatch(inbound("late")) is False

    @pytest.mark.asyncio
    async def test_match_wins_over_later_deadline(self, waiter, clock):
        task = asyncio.create_task(waiter.wait_for(lambda m: True, 10))
        await settle()

        waiter.dispatch(inbound("first"))
        await settle()
        await clock.advance(30)

        assert (await task).content == "first"
        assert clock.sleepers == 0

    @pytest.mark.asyncio
    async def test_predicate_error_is_not_a_match(self, waiter):
        def predicate(message: InboundMessage) -> bool:
            raise KeyError(message.content)

        task = asyncio.create_task(waiter.wait_for(predicate, 10))
        await settle()

        assert waiter.dispatch(inbound("boom")) is False
        assert waiter.pending == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestCreationDialogue:
    @pytest.mark.asyncio
    async def test_happy_path(self, dialogue, waiter, messenger, registry, clock):
        task = await _open(dialogue)
        started_at = clock.now()
        assert "what channel" in _last_reply(messenger)

        assert await _say(waiter, "giveaways")
        assert "<#20>" in _last_reply(messenger)
        assert await _say(waiter, "2M")
        assert "2 minutes" in _last_reply(messenger)
        assert await _say(waiter, "3")
        assert "3 winner(s)" in _last_reply(messenger)
        assert await _say(waiter, "Steam key")

        giveaway = await task
        assert giveaway is not None
        assert giveaway.channel_id == GIVEAWAY_CHANNEL_ID
        assert giveaway.winners == 3
        assert giveaway.prize == "Steam key"
        assert giveaway.guild_id == GUILD_ID
        assert giveaway.end_time == started_at + timedelta(minutes=2)
        assert giveaway in registry
        assert giveaway.message_id in messenger.markers

        announcement = messenger.sent_to(GIVEAWAY_CHANNEL_ID)
        assert len(announcement) == 1
        assert "Steam key" in announcement[0]
        assert "Done!" in _last_reply(messenger)
        assert dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID) is None

    @pytest.mark.asyncio
    async def test_invalid_reply_repeats_the_step(self, dialogue, waiter, messenger):
        task = await _open(dialogue)
        await _say(waiter, "giveaways")

        await _say(waiter, "soon")
        session = dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID)
        assert session.step is DialogueStep.AWAIT_DURATION
        assert "can't seem to get a number" in _last_reply(messenger)
        assert "duration of the giveaway" in _last_reply(messenger)

        await _say(waiter, "5")
        assert session.step is DialogueStep.AWAIT_DURATION
        assert "between 10 seconds and 7 days" in _last_reply(messenger)

        await _say(waiter, "30")
        await _say(waiter, "99")
        assert session.step is DialogueStep.AWAIT_WINNERS
        assert "1 to 15 winners" in _last_reply(messenger)

        await _say(waiter, "x" * 501)
        await _say(waiter, "1")
        await _say(waiter, "x" * 501)
        assert session.step is DialogueStep.AWAIT_PRIZE
        assert "too long" in _last_reply(messenger)

        await _say(waiter, "cancel")
        assert await task is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("replies", [[], ["giveaways"], ["giveaways", "60"], ["giveaways", "60", "2"]])
    async def test_cancel_at_every_step(self, dialogue, waiter, messenger, registry, replies):
        task = await _open(dialogue)
        for reply in replies:
            await _say(waiter, reply)

        await _say(waiter, "Cancel")

        assert await task is None
        assert "not having a giveaway" in _last_reply(messenger)
        assert "cancelled" in _last_reply(messenger)
        assert len(registry) == 0
        assert messenger.sent_to(GIVEAWAY_CHANNEL_ID) == []
        assert dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID) is None

    @pytest.mark.asyncio
    async def test_timeout_abandons_session(self, dialogue, waiter, messenger, registry, clock):
        task = await _open(dialogue)
        await _say(waiter, "giveaways")

        await clock.advance(120)

        assert await task is None
        assert "took longer than 2 minutes" in _last_reply(messenger)
        assert len(registry) == 0
        assert waiter.pending == 0

    @pytest.mark.asyncio
    async def test_each_reply_restarts_the_timer(self, dialogue, waiter, messenger, clock):
        task = await _open(dialogue)

        await clock.advance(100)
        await _say(waiter, "no-such-channel")
        await clock.advance(100)
        assert not task.done()

        session = dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID)
        assert session.step is DialogueStep.AWAIT_CHANNEL
        assert session.deadline == clock.now() + timedelta(seconds=20)

        await clock.advance(20)
        assert await task is None
        assert "took longer" in _last_reply(messenger)

    @pytest.mark.asyncio
    async def test_channel_without_permissions_cancels(self, dialogue, waiter, messenger):
        task = await _open(dialogue)

        await _say(waiter, "announcements")

        assert await task is None
        assert "I can't read, write, or embed links in <#40>" in _last_reply(messenger)

    @pytest.mark.asyncio
    async def test_ambiguous_channel_reprompts(self, dialogue, waiter, messenger):
        task = await _open(dialogue)

        await _say(waiter, "giveaway")
        assert "multiple channels" in _last_reply(messenger)
        await _say(waiter, "nowhere")
        assert "couldn't find any channels called 'nowhere'" in _last_reply(messenger)

        session = dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID)
        assert session.step is DialogueStep.AWAIT_CHANNEL
        await _say(waiter, "cancel")
        await task

    @pytest.mark.asyncio
    async def test_announcement_failure(self, dialogue, waiter, messenger, registry):
        messenger.fail_send_to.add(GIVEAWAY_CHANNEL_ID)
        task = await _open(dialogue)
        for reply in ("giveaways", "60", "1", "Nitro"):
            await _say(waiter, reply)

        assert await task is None
        assert "wasn't able to start the giveaway" in _last_reply(messenger)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_reaction_failure_still_starts(self, dialogue, waiter, messenger, registry):
        messenger.fail_markers = True
        task = await _open(dialogue)
        for reply in ("giveaways", "60", "1", "Nitro"):
            await _say(waiter, reply)

        giveaway = await task
        assert giveaway in registry
        assert messenger.markers == []

    @pytest.mark.asyncio
    async def test_launch_with_missing_answers_is_refused(self, dialogue, messenger, registry):
        session = DialogueSession(
            user_id=USER_ID,
            channel_id=COMMAND_CHANNEL_ID,
            guild_id=GUILD_ID,
            step=DialogueStep.AWAIT_PRIZE,
            target_channel_id=GIVEAWAY_CHANNEL_ID,
        )

        with pytest.raises(RuntimeError, match="missing answers"):
            await dialogue._launch(session, "Nitro")
        assert messenger.sent_to(GIVEAWAY_CHANNEL_ID) == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_second_session_for_same_user_is_refused(self, dialogue, waiter, messenger):
        task = await _open(dialogue)

        assert await dialogue.run(USER_ID, COMMAND_CHANNEL_ID, GUILD_ID) is None
        assert "already setting up a giveaway" in _last_reply(messenger)

        # The original session is unaffected.
        assert await _say(waiter, "giveaways")
        assert dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID).step is DialogueStep.AWAIT_DURATION
        await _say(waiter, "cancel")
        await task

    @pytest.mark.asyncio
    async def test_other_authors_and_channels_are_ignored(self, dialogue, waiter):
        task = await _open(dialogue)

        assert await _say(waiter, "giveaways", author_id=2) is False
        assert await _say(waiter, "giveaways", channel_id=11) is False
        session = dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID)
        assert session.step is DialogueStep.AWAIT_CHANNEL

        await _say(waiter, "cancel")
        await task

    @pytest.mark.asyncio
    async def test_sessions_in_different_channels_are_independent(self, dialogue, waiter, registry):
        first = await _open(dialogue)
        second = asyncio.create_task(dialogue.run(USER_ID, 11, GUILD_ID))
        await settle()

        await _say(waiter, "giveaways", channel_id=11)
        assert dialogue.get_session(USER_ID, 11).step is DialogueStep.AWAIT_DURATION
        assert dialogue.get_session(USER_ID, COMMAND_CHANNEL_ID).step is DialogueStep.AWAIT_CHANNEL

        await _say(waiter, "cancel")
        await _say(waiter, "cancel", channel_id=11)
        assert await first is None
        assert await second is None

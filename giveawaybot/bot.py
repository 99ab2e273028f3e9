from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

import discord
from discord.ext import commands

from .clock import SystemClock
from .config import Config, ConfigError, load_config
from .dialogue import CreationDialogue, EventWaiter
from .giveaway_manager import GiveawayManager
from .messaging import DiscordMessenger
from .models import InboundMessage
from .registry import GiveawayRegistry
from .scheduler import TaskScheduler
from .storage import SnapshotStore

ENV_PATH = Path(".env")

log = logging.getLogger(__name__)


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str, log_file: Path) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # discord.py is chatty at DEBUG (gateway payloads).
    logging.getLogger("discord").setLevel(max(console_level, logging.INFO))


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()
        intents.message_content = True

        super().__init__(
            command_prefix=commands.when_mentioned_or(f"{config.prefix} ", config.prefix),
            intents=intents,
        )
        self.config = config
        clock = SystemClock()
        self.messenger = DiscordMessenger(self)
        self.registry = GiveawayRegistry(history_size=config.reroll.history_size)
        self.storage = SnapshotStore(config.snapshot.path)
        self.scheduler = TaskScheduler(clock, max_workers=config.scheduler.max_workers)
        self.manager = GiveawayManager(
            self.messenger,
            self.registry,
            self.storage,
            clock=clock,
            exclude_previous_winners=config.reroll.exclude_previous_winners,
        )
        self.waiter = EventWaiter(clock)
        self.dialogue = CreationDialogue(
            self.manager,
            self.messenger,
            self.waiter,
            clock=clock,
            timeout_seconds=config.dialogue.timeout_seconds,
        )
        self._engine_started = False

    async def setup_hook(self) -> None:
        await self.manager.load()
        self.manager.schedule(
            self.scheduler,
            tick_seconds=self.config.scheduler.tick_seconds,
            checkpoint_seconds=self.config.snapshot.checkpoint_minutes * 60,
        )
        self._engine_started = True

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        self.waiter.dispatch(
            InboundMessage(
                author_id=message.author.id,
                channel_id=message.channel.id,
                content=message.content,
                guild_id=message.guild.id if message.guild else None,
            )
        )
        await self.process_commands(message)

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        await self.manager.mark_unreachable(payload.channel_id, payload.message_id)

    async def close(self) -> None:
        if self._engine_started:
            await self.manager.shutdown()
            self._engine_started = False
        await self.scheduler.shutdown()
        await super().close()


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level, config.logging.file)
    return GiveawayBot(config)


def register_commands(bot: GiveawayBot) -> None:
    manager = bot.manager

    @bot.command(name="create", help="creates a giveaway (interactive setup)")
    @commands.guild_only()
    async def create(ctx: commands.Context) -> None:
        await bot.dialogue.run(ctx.author.id, ctx.channel.id, ctx.guild.id if ctx.guild else None)

    @bot.command(name="end", help="ends a running giveaway early")
    @commands.guild_only()
    async def end(ctx: commands.Context, message_id: int) -> None:
        giveaway = await manager.force_end(message_id)
        if giveaway is None:
            await ctx.send("I couldn't find a running giveaway for that message.")

    @bot.command(name="reroll", help="picks new winners for an ended giveaway")
    @commands.guild_only()
    async def reroll(ctx: commands.Context, message_id: int) -> None:
        try:
            winners = await manager.reroll(message_id, channel_id=ctx.channel.id)
        except RuntimeError as exc:
            await ctx.send(str(exc))
            return
        if winners is None:
            await ctx.send("I couldn't find an ended giveaway for that message.")
            return
        log.debug("Reroll of %s by %s picked %s", message_id, ctx.author.id, winners)

    @end.error
    @reroll.error
    async def on_message_id_error(ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
            await ctx.send("Please provide the ID of the giveaway message.")
            return
        log.error("Command %s failed", ctx.command, exc_info=error)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

ENTRY_EMOJI = "\N{PARTY POPPER}"
BANNER = f"{ENTRY_EMOJI}   **GIVEAWAY**   {ENTRY_EMOJI}"
ENDED_BANNER = f"{ENTRY_EMOJI}   **GIVEAWAY ENDED**   {ENTRY_EMOJI}"


def format_duration(seconds: int) -> str:
    """Render a number of seconds as e.g. ``1 day, 2 hours and 5 seconds``."""
    seconds = max(int(seconds), 0)
    units = (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1))
    parts = []
    for name, size in units:
        value, seconds = divmod(seconds, size)
        if value:
            parts.append(f"{value} {name}{'' if value == 1 else 's'}")
    if not parts:
        return "0 seconds"
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]


def mentions(user_ids: Iterable[int]) -> str:
    return ", ".join(f"<@{user_id}>" for user_id in user_ids)


def _prize_line(prize: Optional[str]) -> str:
    return f"**{prize}**\n" if prize else ""


def render_active(prize: Optional[str], winners: int, end_time: datetime, now: datetime) -> str:
    remaining = int((end_time - now).total_seconds())
    return (
        f"{BANNER}\n{_prize_line(prize)}"
        f"React with {ENTRY_EMOJI} to enter!\n"
        f"Time remaining: **{format_duration(remaining)}**\n"
        f"Winners: {winners}"
    )


def render_ended(prize: Optional[str], winners: Iterable[int]) -> str:
    winner_list = list(winners)
    result = f"Winner(s): {mentions(winner_list)}" if winner_list else "No valid entrants."
    return f"{ENDED_BANNER}\n{_prize_line(prize)}{result}"


def render_result(prize: Optional[str], winners: Iterable[int], *, reroll: bool = False) -> str:
    winner_list = list(winners)
    target = f" the **{prize}**" if prize else " the giveaway"
    if not winner_list:
        return f"Could not determine a winner for{target}: no valid entrants."
    verb = "The new winner of" if reroll else "Congratulations"
    if reroll:
        return f"{ENTRY_EMOJI} {verb}{target} is {mentions(winner_list)}!"
    return f"{ENTRY_EMOJI} {verb} {mentions(winner_list)}! You won{target}!"

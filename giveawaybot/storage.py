"""Line-based snapshot persistence for active giveaways."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, List

from .models import Giveaway

LOGGER = logging.getLogger(__name__)

SEPARATOR = "  "
NULL_PRIZE = "null"


class PersistenceError(RuntimeError):
    """Raised when a snapshot line or file cannot be read or written."""


def format_line(giveaway: Giveaway) -> str:
    """Serialize a giveaway as ``channel  message  end  winners  prize``."""
    if giveaway.prize is None:
        prize = NULL_PRIZE
    else:
        prize = giveaway.prize.replace("\n", " ").replace("\r", "")
    return SEPARATOR.join(
        (
            str(giveaway.channel_id),
            str(giveaway.message_id),
            giveaway.end_time.isoformat(),
            str(giveaway.winners),
            prize,
        )
    )


def parse_line(line: str) -> Giveaway:
    """Rebuild a giveaway from one snapshot line.

    Lines written before winner counts were stored have four fields
    (``channel  message  end  prize``); those default to a single winner.
    """
    parts = line.strip().split(SEPARATOR, 4)
    if len(parts) < 4:
        raise PersistenceError(f"Expected at least 4 fields, got {len(parts)}: {line!r}")
    try:
        channel_id = int(parts[0])
        message_id = int(parts[1])
        end_time = datetime.fromisoformat(parts[2])
    except ValueError as exc:
        raise PersistenceError(f"Malformed snapshot line: {line!r}") from exc
    if end_time.tzinfo is None:
        end_time = end_time.replace(tzinfo=UTC)

    try:
        winners = int(parts[3])
        prize = parts[4] if len(parts) == 5 else None
    except ValueError:
        winners = 1
        prize = parts[3] if len(parts) == 4 else SEPARATOR.join(parts[3:])
    if prize == NULL_PRIZE:
        prize = None

    try:
        return Giveaway(
            channel_id=channel_id,
            message_id=message_id,
            end_time=end_time,
            winners=winners,
            prize=prize,
        )
    except ValueError as exc:
        raise PersistenceError(f"Invalid giveaway in snapshot line: {line!r}") from exc


class SnapshotStore:
    """Reads and atomically rewrites the giveaway snapshot file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def load(self) -> List[Giveaway]:
        """Load every parseable giveaway; a missing file means a fresh start."""
        async with self._lock:
            if not self.path.exists():
                LOGGER.info("No snapshot at %s; starting with no giveaways.", self.path)
                return []
            try:
                raw = await asyncio.to_thread(self.path.read_bytes)
            except OSError as exc:
                LOGGER.warning("Unable to read snapshot %s: %s", self.path, exc)
                return []

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("latin-1")

        giveaways: List[Giveaway] = []
        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                giveaways.append(parse_line(line))
            except PersistenceError as exc:
                LOGGER.warning("Skipping snapshot line %d: %s", number, exc)
        LOGGER.info("Loaded %d giveaway(s) from %s", len(giveaways), self.path)
        return giveaways

    async def save(self, giveaways: Iterable[Giveaway]) -> None:
        """Replace the snapshot with the given giveaways."""
        content = "\n".join(format_line(giveaway) for giveaway in giveaways).strip()
        async with self._lock:
            try:
                await asyncio.to_thread(self._write, content)
            except OSError as exc:
                raise PersistenceError(f"Unable to write snapshot {self.path}: {exc}") from exc

    def _write(self, content: str) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
        except Exception:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

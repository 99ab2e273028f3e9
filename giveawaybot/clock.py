"""Time source used by the scheduler and dialogue timeouts."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now(tz=UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0))

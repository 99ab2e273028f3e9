from __future__ import annotations

import random
import secrets
from typing import Iterable, List, Optional


def select_winners(
    entrants: Iterable[int],
    count: int,
    exclude: Optional[int] = None,
    *,
    rng: Optional[random.Random] = None,
) -> List[int]:
    """Draw up to ``count`` distinct winners from ``entrants``.

    ``exclude`` (normally the bot's own user id) is never selected. When the
    remaining pool is no larger than ``count`` every candidate wins.
    """
    if count < 1:
        raise ValueError("count must be greater than zero")
    pool = sorted({int(user_id) for user_id in entrants if user_id != exclude})
    if len(pool) <= count:
        return pool
    rng = rng or secrets.SystemRandom()
    return rng.sample(pool, count)

"""Wall-clock and sleep primitives.

Timers and expiry checks read time through a ``Clock`` and suspend through
an injectable sleep function so tests can drive them deterministically.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Protocol

SleepFunc = Callable[[float], Awaitable[None]]


class Clock(Protocol):
    """Source of wall-clock time in seconds since the epoch."""

    def time(self) -> float: ...


class SystemClock:
    """Clock backed by ``time.time``."""

    def time(self) -> float:
        return time.time()


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)

"""
Clock and pacing -- the one place the engine waits on wall-clock time.

Pauses between visible steps (moderation, rounds, phase hand-offs) are named in
PacingConfig and awaited through a Clock, so tests swap in a fake clock.
"""

import asyncio
import time
from typing import Protocol

from ..config import PacingConfig


class Clock(Protocol):
    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time and real asyncio sleeps."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class Pacer:
    """Awaits the named pauses from PacingConfig on the injected clock."""

    def __init__(self, clock: Clock, config: PacingConfig | None = None):
        self.clock = clock
        self.config = config or PacingConfig()

    async def pause(self, name: str) -> None:
        seconds = getattr(self.config, name)
        await self.clock.sleep(seconds)

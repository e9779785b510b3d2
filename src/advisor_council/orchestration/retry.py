"""
RetryExecutor -- bounded retries with exponential backoff and jitter.

Delay before attempt n+1 is base_delay * 2^(n-1) + uniform(0, max_jitter).
Sleep and jitter are injected so tests run without wall-clock waits.

Usage:
    retry = RetryExecutor(sleep=clock.sleep)
    text = await retry.run(
        lambda: generator.complete(prompt, system, timeout=5.0),
        max_attempts=2,
        base_delay=1.0,
    )
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from ..errors import GenerationTimeout, PhaseTransitionError, SessionNotFound

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE = (SessionNotFound, PhaseTransitionError)


async def with_deadline(awaitable: Awaitable[T], timeout: float, backend: str = "") -> T:
    """Race an awaitable against a deadline, raising GenerationTimeout on expiry."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise GenerationTimeout(timeout, backend) from e


class RetryExecutor:
    """Runs a zero-argument coroutine factory until it succeeds or attempts run out."""

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        jitter: Callable[[float, float], float] | None = None,
        max_jitter: float = 1.0,
    ):
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter or random.uniform
        self._max_jitter = max_jitter

    def backoff(self, attempt: int, base_delay: float) -> float:
        """Delay after the given failed attempt (1-based)."""
        return base_delay * (2 ** (attempt - 1)) + self._jitter(0.0, self._max_jitter)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        max_attempts: int = 2,
        base_delay: float = 1.0,
        label: str = "call",
    ) -> T:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(1, max_attempts + 1):
            try:
                return await fn()
            except NON_RETRYABLE:
                raise
            except Exception as e:
                if attempt >= max_attempts:
                    logger.error(f"[Retry] {label} exhausted {max_attempts} attempts: {e}")
                    raise
                delay = self.backoff(attempt, base_delay)
                logger.warning(
                    f"[Retry] {label} failed (attempt {attempt}/{max_attempts}): "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise RuntimeError(f"{label}: retry loop ended without a result")

"""
Background timers for the chatbot.

A RecurringTask sleeps a freshly computed delay before every run, so it covers
both fixed-period work (persistence) and a one-shot timer that is re-armed
with a new random delay after each firing (proactive messages).
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from .errors import InvalidArgumentError, LifecycleError

logger = logging.getLogger("ragbot.scheduling")

DelayFn = Callable[[], float]


def fixed_delay(seconds: float) -> DelayFn:
    if seconds <= 0:
        raise InvalidArgumentError("Interval must be positive")
    return lambda: seconds


def random_minutes(min_minutes: int, max_minutes: int, rng: Optional[random.Random] = None) -> DelayFn:
    """Delay drawn uniformly from whole minutes in [min_minutes, max_minutes]."""
    if min_minutes < 1:
        raise InvalidArgumentError("min_minutes must be >= 1")
    if min_minutes > max_minutes:
        raise InvalidArgumentError("min_minutes must be <= max_minutes")
    rng = rng or random.Random()
    return lambda: rng.randint(min_minutes, max_minutes) * 60.0


class RecurringTask:
    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        delay: DelayFn,
        *,
        initial_delay: Optional[float] = None,
    ) -> None:
        self.name = name
        self._callback = callback
        self._delay = delay
        self._initial_delay = initial_delay
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            raise LifecycleError(f"Timer {self.name} is already running")
        self._task = asyncio.create_task(self._loop(), name=f"timer-{self.name}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        delay = self._initial_delay if self._initial_delay is not None else self._delay()
        while True:
            logger.debug("Timer %s fires in %.0fs", self.name, delay)
            await asyncio.sleep(delay)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Timer %s callback failed", self.name)
            self.runs += 1
            delay = self._delay()

"""Cancellable sleeps and human-like pacing between browser actions."""
from __future__ import annotations

import random
import time
from typing import Callable

from jobpilot.errors import WorkflowCancelled
from jobpilot.log import get_logger

log = get_logger(__name__)


def _never() -> bool:
    return False


class Sleeper:
    """Sleeps in slices of ``poll_interval`` and checks ``should_stop`` between them.

    Every wait in the workflow goes through one of these, so a persisted
    cancellation is observed within one poll interval even during a long
    rate-limit cooldown.
    """

    def __init__(
        self,
        should_stop: Callable[[], bool] | None = None,
        *,
        poll_interval: float = 1.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.should_stop = should_stop or _never
        self.poll_interval = poll_interval
        self._sleep = sleep_fn

    def check(self) -> None:
        if self.should_stop():
            raise WorkflowCancelled()

    def sleep(self, seconds: float) -> None:
        self.check()
        remaining = max(0.0, float(seconds))
        while remaining > 0:
            chunk = min(remaining, self.poll_interval)
            self._sleep(chunk)
            remaining -= chunk
            self.check()


class HumanPacer:
    """Jittered delay inserted before every page interaction."""

    def __init__(
        self,
        min_delay: float,
        max_delay: float,
        sleeper: Sleeper | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("need 0 <= min_delay <= max_delay")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.sleeper = sleeper or Sleeper()
        self._rng = rng or random.Random()

    def pause(self) -> float:
        delay = self._rng.uniform(self.min_delay, self.max_delay)
        log.debug("Pausing %.2fs", delay)
        self.sleeper.sleep(delay)
        return delay

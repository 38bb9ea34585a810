"""Per-platform request budgets over minute, hour and day windows."""
from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Callable

from jobpilot.log import get_logger
from jobpilot.models import RateDecision, RateLimitState

log = get_logger(__name__)

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


@dataclass(frozen=True)
class PlatformLimits:
    per_minute: int
    per_hour: int
    per_day: int


DEFAULT_LIMITS: dict[str, PlatformLimits] = {
    "linkedin": PlatformLimits(10, 60, 100),
    "indeed": PlatformLimits(15, 90, 150),
    "naukri": PlatformLimits(10, 60, 100),
    "workday": PlatformLimits(12, 80, 200),
    "greenhouse": PlatformLimits(20, 150, 400),
    "lever": PlatformLimits(20, 150, 400),
    "aggregator": PlatformLimits(15, 100, 300),
    "generic": PlatformLimits(20, 200, 500),
}


def platform_for_url(url: str) -> str:
    """Classify the URL into a known platform bucket."""
    u = (url or "").lower()
    if "linkedin.com" in u:
        return "linkedin"
    if "naukri.com" in u:
        return "naukri"
    if "myworkdayjobs.com" in u or "workday.com" in u:
        return "workday"
    if "greenhouse.io" in u:
        return "greenhouse"
    if "lever.co" in u:
        return "lever"
    if "indeed.com" in u:
        return "indeed"
    if any(agg in u for agg in ["simplyhired", "talent.com", "jobrapido", "bebee.com",
                                "builtin.com", "remote.co", "talentify", "remotive.com"]):
        return "aggregator"
    return "generic"


class RateLimiter:
    """Single authoritative counter set per platform, guarded by one lock.

    Windows reset lazily on access once their period has elapsed. When a
    ceiling is reached the platform enters a cooldown of that window's
    length and every call is refused until it expires.
    """

    def __init__(
        self,
        limits: dict[str, PlatformLimits] | None = None,
        *,
        default: PlatformLimits | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._limits = dict(DEFAULT_LIMITS)
        self._limits.update(limits or {})
        self._default = default or DEFAULT_LIMITS["generic"]
        self._clock = clock
        self._states: dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_overrides(cls, overrides: dict[str, dict[str, int]] | None, **kwargs) -> "RateLimiter":
        limits: dict[str, PlatformLimits] = {}
        for platform, values in (overrides or {}).items():
            base = DEFAULT_LIMITS.get(platform, DEFAULT_LIMITS["generic"])
            limits[platform] = dataclasses.replace(base, **values)
        return cls(limits, **kwargs)

    def limits_for(self, platform: str) -> PlatformLimits:
        return self._limits.get(platform, self._default)

    def _state(self, platform: str, now: float) -> RateLimitState:
        state = self._states.get(platform)
        if state is None:
            state = RateLimitState(platform, minute_started=now, hour_started=now, day_started=now)
            self._states[platform] = state
        return state

    @staticmethod
    def _roll_windows(state: RateLimitState, now: float) -> None:
        if now - state.minute_started >= MINUTE:
            state.minute_count, state.minute_started = 0, now
        if now - state.hour_started >= HOUR:
            state.hour_count, state.hour_started = 0, now
        if now - state.day_started >= DAY:
            state.day_count, state.day_started = 0, now

    def check_and_consume(self, platform: str) -> RateDecision:
        limits = self.limits_for(platform)
        with self._lock:
            now = self._clock()
            state = self._state(platform, now)
            self._roll_windows(state, now)

            if state.cooldown_until is not None:
                if now < state.cooldown_until:
                    return RateDecision(False, state.cooldown_until - now)
                state.cooldown_until = None

            for count, ceiling, period, label in (
                (state.minute_count, limits.per_minute, MINUTE, "minute"),
                (state.hour_count, limits.per_hour, HOUR, "hour"),
                (state.day_count, limits.per_day, DAY, "day"),
            ):
                if count >= ceiling:
                    state.cooldown_until = now + period
                    log.warning("Rate limit hit for %s (%d/%s) — cooling down %.0fs",
                                platform, ceiling, label, period)
                    return RateDecision(False, period)

            state.minute_count += 1
            state.hour_count += 1
            state.day_count += 1
            return RateDecision(True, 0.0)

    def snapshot(self, platform: str) -> RateLimitState:
        """Copy of the platform's state after lazy window resets."""
        with self._lock:
            now = self._clock()
            state = self._state(platform, now)
            self._roll_windows(state, now)
            return dataclasses.replace(state)

    def reset(self, platform: str | None = None) -> None:
        with self._lock:
            if platform is None:
                self._states.clear()
            else:
                self._states.pop(platform, None)

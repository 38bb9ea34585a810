"""Retrying: a backoff executor, plus a decorator form for HTTP calls."""
from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable, Tuple, Type, TypeVar

from jobpilot.errors import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Runs a callable, sleeping ``base_delay * 2**attempt`` between failures.

    Only ``retryable`` exceptions are retried; anything else (terminal-per-job
    errors, cancellation) propagates on the first occurrence. ``sleep`` is
    normally a cancellable ``Sleeper.sleep``. ``max_delay`` caps a single wait
    and ``jitter`` scales it by a random factor in [0.5, 1.5).
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        *,
        sleep: Callable[[float], None] | None = None,
        retryable: Tuple[Type[BaseException], ...] = (RetryableError,),
        max_delay: float | None = None,
        jitter: bool = False,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retryable = retryable
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep or time.sleep

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    def execute(self, fn: Callable[[], T], *, label: str = "operation") -> T:
        for attempt in range(self.max_attempts):
            try:
                return fn()
            except self.retryable as exc:
                if attempt == self.max_attempts - 1:
                    logger.error("%s failed after %d attempts: %s", label, self.max_attempts, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.1fs",
                    label, attempt + 1, self.max_attempts, exc, delay,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")


def retry(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable:
    """Decorator form of RetryExecutor with a capped, jittered schedule."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            executor = RetryExecutor(
                max_attempts,
                base_delay,
                sleep=time.sleep,
                retryable=retryable,
                max_delay=max_delay,
                jitter=jitter,
            )
            return executor.execute(lambda: fn(*args, **kwargs), label=fn.__qualname__)

        return wrapper

    return decorator

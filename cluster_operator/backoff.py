"""Bounded backoff used for every registry call."""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

from .config import RETRY_DURATION_SECONDS, RETRY_FACTOR, RETRY_JITTER, RETRY_STEPS
from .errors import RegistryUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff parameters.

    ``steps`` is the number of attempts; between attempts the policy waits
    ``duration`` seconds scaled by a random factor within ``jitter`` of 1,
    multiplying ``duration`` by ``factor`` after each wait (up to ``cap``).
    """
    steps: int = RETRY_STEPS
    duration: float = RETRY_DURATION_SECONDS
    factor: float = RETRY_FACTOR
    jitter: float = RETRY_JITTER
    cap: Optional[float] = None

    def delays(self, rng: Callable[[], float] = random.random) -> Iterator[float]:
        """Yield the wait before each retry (``steps - 1`` values)."""
        duration = self.duration
        for _ in range(max(self.steps - 1, 0)):
            delay = duration
            if self.jitter > 0:
                delay = duration * (1 + self.jitter * (2 * rng() - 1))
            yield delay
            if self.factor != 1.0:
                duration = duration * self.factor
                if self.cap is not None:
                    duration = min(duration, self.cap)


DEFAULT_RETRY = RetryPolicy()


def retry(
    policy: RetryPolicy,
    attempt: Callable[[], T],
    stop_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``attempt`` until it returns or the policy runs out of steps.

    ``attempt`` signals a retryable failure by raising RegistryUnavailable;
    any other exception propagates immediately. When ``stop_event`` is given
    the waits are interruptible and a set event aborts the retry sequence.

    Raises:
        RegistryUnavailable: the last failure once all attempts are used
    """
    if policy.steps < 1:
        raise ValueError("RetryPolicy.steps must be at least 1")

    delays = policy.delays()
    last_error: Optional[RegistryUnavailable] = None
    started = time.monotonic()

    for number in range(1, policy.steps + 1):
        try:
            return attempt()
        except RegistryUnavailable as e:
            last_error = e
            logger.debug(f"Attempt {number}/{policy.steps} failed: {e}")

        if number == policy.steps:
            break

        delay = next(delays)
        if stop_event is not None:
            if stop_event.wait(delay):
                raise RegistryUnavailable(
                    f"Retry cancelled after {number} attempt(s): {last_error}",
                    status_code=last_error.status_code,
                ) from last_error
        else:
            sleep(delay)

    elapsed = time.monotonic() - started
    raise RegistryUnavailable(
        f"Giving up after {policy.steps} attempt(s) in {elapsed:.1f}s: {last_error}",
        status_code=last_error.status_code,
    ) from last_error

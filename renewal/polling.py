"""
Fixed-interval polling with a deadline.

The CA moves orders between states asynchronously; the orchestrator waits for
those transitions with poll_until().  There is no backoff and no jitter, but
every wait is bounded: when the deadline passes PollTimeoutError is raised
instead of looping forever.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollTimeoutError(Exception):
    """A polling phase did not reach its exit condition before the deadline."""

    def __init__(self, what: str, attempts: int, timeout: float) -> None:
        self.what = what
        self.attempts = attempts
        self.timeout = timeout
        super().__init__(f"Timed out after {attempts} polls ({timeout:.0f}s) waiting for {what}")


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    interval: float,
    timeout: float,
    what: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call *fetch* until *done(result)* is true and return that result.

    The first fetch happens immediately; *interval* seconds are slept between
    fetches.  Exceptions from *fetch* propagate unchanged.
    """
    deadline = clock() + timeout
    attempts = 0
    while True:
        result = fetch()
        attempts += 1
        if done(result):
            return result
        if clock() + interval > deadline:
            raise PollTimeoutError(what, attempts, timeout)
        logger.debug("Waiting %.0fs for %s (poll %d)", interval, what, attempts)
        sleep(interval)

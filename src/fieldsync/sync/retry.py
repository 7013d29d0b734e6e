"""Retry scheduling and failure classification.

This module provides:
- RetryScheduler: Back-off ladder for queued items, fired on timer threads
- classify_failure: Split exceptions into retryable and terminal-session
- retry_call: In-request retry of a single HTTP call with jittered backoff

Queued items and single HTTP calls are retried at two different levels:

    retry_call        seconds, inside one request, transient statuses only
    RetryScheduler    ladder of 1/5/15/30/60s, re-runs the whole queue drain
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import httpx

from fieldsync.core.config import DEFAULT_RETRY_DELAYS
from fieldsync.core.types import FailureKind
from fieldsync.remote import RemoteAuthError

logger = logging.getLogger(__name__)

# HTTP statuses worth retrying inside a single request
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# HTTP statuses that mean the session itself is no longer valid
AUTH_STATUS_CODES = frozenset({401, 403})

DEFAULT_REQUEST_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_JITTER = 0.25  # +/- 25%

R = TypeVar("R")


class TimerHandle(Protocol):
    """A started-later, cancellable one-shot timer (threading.Timer shape)."""

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def daemon_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Default timer factory: a daemon threading.Timer."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


def classify_failure(error: BaseException) -> FailureKind:
    """Classify an exception raised while applying a queued item.

    Authentication failures end the session and must wait for the user;
    everything else (network, server, quota on the remote side) is retried.
    """
    if isinstance(error, RemoteAuthError):
        return FailureKind.TERMINAL_SESSION
    if getattr(error, "status_code", None) in AUTH_STATUS_CODES:
        return FailureKind.TERMINAL_SESSION
    return FailureKind.RETRYABLE


def is_transient(error: Exception) -> bool:
    """Whether an error is a network failure or a transient HTTP status."""
    if isinstance(error, httpx.TransportError):
        return True
    return getattr(error, "status_code", None) in RETRYABLE_STATUS_CODES


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
) -> float:
    """Exponential delay for a zero-based attempt, with +/- jitter."""
    delay = min(base_delay * (2**attempt), max_delay)
    return max(0.0, delay + delay * jitter * random.uniform(-1, 1))


def retry_call(
    func: Callable[[], R],
    max_retries: int = DEFAULT_REQUEST_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    is_retryable: Callable[[Exception], bool] = is_transient,
    sleep: Callable[[float], Any] = time.sleep,
) -> R:
    """Execute a single call, retrying transient failures with backoff.

    Args:
        func: Call to execute.
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry in seconds.
        max_delay: Upper bound of any delay in seconds.
        jitter: Relative random spread applied to each delay.
        is_retryable: Predicate selecting errors worth retrying.
        sleep: Sleep function (injectable for tests).

    Returns:
        Result of the call.

    Raises:
        The last exception once retries are exhausted, or immediately
        for errors that are not retryable.
    """
    attempt = 0
    while True:
        try:
            return func()
        except Exception as e:
            if attempt >= max_retries or not is_retryable(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            attempt += 1
            logger.warning(
                "Request failed (%s), retry %d/%d in %.1fs", e, attempt, max_retries, delay
            )
            sleep(delay)


class RetryScheduler:
    """Schedules re-drains of a queue after failed attempts.

    The delay for an item that has failed ``attempts`` times is
    ``delays[min(attempts - 1, len(delays) - 1)]``. When the timer fires
    the whole drain runs again, not just the failed item.

    Usage:
        scheduler = RetryScheduler(max_retries=5)
        if not scheduler.schedule_retry(operation, engine.process_queue):
            queue.mark_terminal(operation.id, "retries exhausted")
    """

    def __init__(
        self,
        delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
        max_retries: int = 5,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        if not delays:
            raise ValueError("delays must not be empty")
        self._delays = tuple(delays)
        self._max_retries = max_retries
        self._timer_factory = timer_factory or daemon_timer
        self._lock = threading.Lock()
        self._timers: list[TimerHandle] = []

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def pending_timers(self) -> int:
        """Number of scheduled timers that have not fired yet."""
        with self._lock:
            return len(self._timers)

    def delay_for(self, attempts: int) -> float:
        """Back-off delay in seconds after ``attempts`` failures."""
        index = min(max(attempts, 1) - 1, len(self._delays) - 1)
        return self._delays[index]

    def exhausted(self, attempts: int) -> bool:
        """Whether an item with this many failures must not be retried."""
        return attempts >= self._max_retries

    def schedule_retry(self, item: Any, drain: Callable[[], Any]) -> bool:
        """Schedule a drain after the back-off delay of a failed item.

        Args:
            item: Queued item whose ``attempts`` was just incremented.
            drain: Drain function to call when the timer fires.

        Returns:
            False if the item exhausted its retries (nothing scheduled).
        """
        if self.exhausted(item.attempts):
            return False

        delay = self.delay_for(item.attempts)

        def fire() -> None:
            with self._lock:
                if timer in self._timers:
                    self._timers.remove(timer)
            try:
                drain()
            except Exception:
                logger.exception("Scheduled drain failed")

        timer = self._timer_factory(delay, fire)
        with self._lock:
            self._timers.append(timer)
        timer.start()

        logger.info(
            "Retry %d/%d for %r in %.0fs", item.attempts, self._max_retries, item, delay
        )
        return True

    def cancel_all(self) -> int:
        """Cancel every pending timer.

        Returns:
            Number of timers cancelled
        """
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        if timers:
            logger.debug("Cancelled %d retry timers", len(timers))
        return len(timers)

"""Capped exponential backoff for classified LLM failures."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from qadigest.core.errors import LLMRateLimitError, LLMServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryCancelled(Exception):
    """Raised when a backoff sleep is interrupted by cancellation."""

    def __init__(self, last_error: BaseException | None = None):
        self.last_error = last_error
        detail = f" after: {last_error}" if last_error is not None else ""
        super().__init__(f"Retry cancelled{detail}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry schedule: ``base_delay * multiplier**attempt``, capped at ``max_delay``.

    Only errors whose ``retryable`` flag is set (timeouts, rate limits) are
    retried. A rate limit's ``retry_after`` hint raises the delay, never
    lowers it.
    """

    max_retries: int = 2
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_index: int, error: BaseException | None = None) -> float:
        """Seconds to wait before retry number ``retry_index`` (0-based)."""
        delay = min(self.base_delay * (self.multiplier ** retry_index), self.max_delay)
        if isinstance(error, LLMRateLimitError) and error.retry_after is not None:
            delay = max(delay, min(error.retry_after, self.max_delay))
        return delay

    def should_retry(self, error: BaseException, retry_index: int) -> bool:
        return (
            isinstance(error, LLMServiceError)
            and error.retryable
            and retry_index < self.max_retries
        )


def _event_sleep(cancel_event: threading.Event | None) -> Callable[[float], bool]:
    """Return a sleep function that reports True if it was interrupted."""
    event = cancel_event or threading.Event()

    def _sleep(seconds: float) -> bool:
        return event.wait(seconds)

    return _sleep


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str = "LLM call",
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], object] | None = None,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> T:
    """Call ``fn`` and retry retryable ``LLMServiceError``s per ``policy``.

    Args:
        fn: Zero-argument callable performing one attempt.
        policy: The retry schedule.
        description: Human-readable label for log messages.
        cancel_event: When set, no further attempt starts and pending backoff
            sleeps stop; RetryCancelled is raised.
        sleep: Override the sleep function (tests). The cancel event is
            checked after it returns.
        on_retry: Callback ``(attempt, delay, error)`` before each sleep.

    Returns:
        Whatever ``fn`` returns on the first successful attempt.
    """
    waiter = _event_sleep(cancel_event)
    retry_index = 0
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelled()
        try:
            return fn()
        except LLMServiceError as exc:
            if not policy.should_retry(exc, retry_index):
                if exc.retryable:
                    logger.warning(
                        "%s failed after %d attempts: %s", description, retry_index + 1, exc
                    )
                raise
            delay = policy.delay_for(retry_index, exc)
            logger.info(
                "Transient %s error on %s, retrying in %.1fs (attempt %d/%d)",
                exc.kind, description, delay, retry_index + 2, policy.max_attempts,
            )
            if on_retry is not None:
                on_retry(retry_index + 1, delay, exc)
            if sleep is not None:
                sleep(delay)
                interrupted = cancel_event is not None and cancel_event.is_set()
            else:
                interrupted = waiter(delay)
            if interrupted:
                raise RetryCancelled(exc) from exc
            retry_index += 1

"""Bounded retry policy for flaky I/O calls."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pegwatch.errors import QuoteNotSupported, SourceUnavailable


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry a call a fixed number of times with exponential backoff.

    Attributes:
        max_attempts: Total attempts, including the first.
        delay: Seconds to wait after the first failure.
        backoff: Multiplier applied to the delay after each failure.
        max_delay: Upper bound on any single wait.
        retry_on: Exception types that count as a failed attempt.
        give_up_on: Exception types that end retrying at once, even when
            they are also listed in ``retry_on``.
        sleep: Sleep function, replaceable in tests.
    """

    max_attempts: int = 3
    delay: float = 2.0
    backoff: float = 2.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (SourceUnavailable,)
    give_up_on: tuple[type[BaseException], ...] = (QuoteNotSupported,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def disabled(cls) -> "RetryPolicy":
        """A policy that makes exactly one attempt."""
        return cls(max_attempts=1, delay=0.0)

    def _retrying(self, description: str) -> Retrying:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.outcome.exception(),
                retry_state.next_action.sleep,
            )

        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.delay, exp_base=self.backoff, max=self.max_delay
            ),
            retry=(
                retry_if_exception_type(self.retry_on)
                & retry_if_not_exception_type(self.give_up_on)
            ),
            reraise=True,
            sleep=self.sleep,
            before_sleep=log_retry,
        )

    def call(self, fn: Callable[..., T], *args: Any, description: str = "call", **kwargs: Any) -> T:
        """Invoke ``fn`` until it succeeds or attempts run out.

        Raises:
            The last exception from ``fn`` once every attempt has failed.
            Exceptions outside ``retry_on`` propagate immediately.
        """
        try:
            return self._retrying(description)(fn, *args, **kwargs)
        except self.retry_on as e:
            logger.warning("%s gave up: %s", description, e)
            raise

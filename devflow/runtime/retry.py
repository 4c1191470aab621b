"""Activity retry policy for devflow's workflow engine.

Every activity call goes through execute_with_retry: a bounded number of
attempts with exponential backoff, after which the last error is wrapped in
an ActivityError and surfaced to the workflow.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from devflow.core.config import RetryConfig
from devflow.core.exceptions import ActivityError, NonRetryableError

logger = logging.getLogger("devflow.runtime.retry")


@dataclass(frozen=True)
class RetryPolicy:
    """Baseline: 3 attempts, backoff from 5s doubling up to 2 minutes."""

    max_attempts: int = 3
    initial_interval: float = 5.0
    backoff_coefficient: float = 2.0
    maximum_interval: float = 120.0
    non_retryable: tuple[type[BaseException], ...] = field(default=(NonRetryableError,))

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.initial_interval * (self.backoff_coefficient ** (attempt - 1))
        return min(delay, self.maximum_interval)

    def is_retryable(self, error: BaseException) -> bool:
        return not isinstance(error, self.non_retryable)

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_interval=config.initial_interval_seconds,
            backoff_coefficient=config.backoff_coefficient,
            maximum_interval=config.maximum_interval_seconds,
        )


NO_RETRY = RetryPolicy(max_attempts=1)


def execute_with_retry(
    name: str,
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[Any, int]:
    """Call fn(*args) under a retry policy.

    Returns:
        Tuple of (result, attempts used).

    Raises:
        ActivityError: When the error is non-retryable or attempts run out.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args), attempt
        except Exception as e:
            if not policy.is_retryable(e):
                logger.warning("Activity %s failed (non-retryable): %s", name, e)
                raise ActivityError(name, attempt, cause=e) from e
            if attempt == attempts:
                logger.warning("Activity %s failed after %d attempt(s): %s", name, attempt, e)
                raise ActivityError(name, attempt, cause=e) from e
            delay = policy.delay_for(attempt)
            logger.warning(
                "Activity %s attempt %d/%d failed: %s. Retrying in %.1fs",
                name, attempt, attempts, e, delay,
            )
            sleep(delay)

    raise AssertionError("unreachable")

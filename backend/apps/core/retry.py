"""Bounded retry with exponential backoff.

Every retry loop in the provisioning path goes through here so the budgets
stay small and explicit.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from apps.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Tuneable parameters for retry behaviour.

    Attributes:
        attempts: Total number of calls, including the first one.
        base_delay: Delay in seconds after the first failure; doubled after each
            further failure.
        max_delay: Upper bound on a single delay.
    """

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, failed_attempt: int) -> float:
        """Return the wait after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (failed_attempt - 1)), self.max_delay)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retryable: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "operation",
) -> T:
    """
    Call *fn* until it succeeds or the policy's attempts are used up.

    Only exceptions listed in *retryable* trigger another attempt; anything else
    propagates immediately. The last retryable exception is re-raised once the
    budget is exhausted.
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except retryable as exc:
            if attempt >= policy.attempts:
                logger.warning(
                    "retry_budget_exhausted",
                    operation=operation,
                    attempts=policy.attempts,
                    error=str(exc),
                )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay_seconds=delay,
                error=str(exc),
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover

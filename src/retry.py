"""Backoff policies with exponential delay.

The retry loops themselves live in their owners (orchestrator, sync manager);
this module only answers "how long until the next attempt" and "is this the
last attempt", so both can be unit tested without time passing.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 2
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000
    exponential_base: float = 2.0
    jitter: bool = False  # +/- 25%, off by default so delays are deterministic


def calculate_delay(
    attempt: int,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 60000,
    exponential_base: float = 2.0,
    jitter: bool = False,
) -> int:
    """Calculate delay for a retry attempt with exponential backoff.

    Args:
        attempt: Exponent for this retry (0-indexed)
        base_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter

    Returns:
        Delay in milliseconds
    """
    delay = base_delay_ms * (exponential_base ** max(attempt, 0))
    delay = min(delay, max_delay_ms)

    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return int(max(0, delay))


class AttemptSchedule:
    """Attempt counter for one provider: which attempt we are on and what comes next.

    Attempts are 1-indexed. After a failed attempt ``next_delay_ms()`` gives
    ``min(base * 2^(attempt-1), cap)``, or ``None`` when the budget is spent.
    """

    def __init__(self, policy: BackoffPolicy):
        self.policy = policy
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def begin(self) -> int:
        """Start the next attempt and return its 1-indexed number."""
        if self.exhausted:
            raise RuntimeError(f"No attempts left (max {self.policy.max_attempts})")
        self.attempt += 1
        return self.attempt

    def next_delay_ms(self) -> Optional[int]:
        """Delay before the next attempt, or None if the current one was the last."""
        if self.exhausted:
            return None
        return calculate_delay(
            self.attempt - 1,
            self.policy.base_delay_ms,
            self.policy.max_delay_ms,
            self.policy.exponential_base,
            self.policy.jitter,
        )


def item_retry_delay_ms(retry_count: int, policy: BackoffPolicy) -> Optional[int]:
    """Delay before a failed queue item is retried.

    ``retry_count`` is the item's count before the failure that triggers the
    retry. Returns None once the item has used up ``policy.max_attempts``.
    """
    if retry_count + 1 >= policy.max_attempts:
        return None
    return calculate_delay(
        retry_count,
        policy.base_delay_ms,
        policy.max_delay_ms,
        policy.exponential_base,
        policy.jitter,
    )

"""Retry policies for node executions.

Retries are durable: instead of sleeping in-process, the scheduler puts the
execution back to ``scheduled`` with ``scheduled_at = now + compute_delay()``
and the delay sweep picks it up when the backoff has elapsed.

Usage:
    strategy = RetryStrategy.exponential(max_attempts=5, base_delay=2.0, max_delay=300.0)
    if strategy.should_retry(execution.attempt_count, error):
        execution.scheduled_at = now + timedelta(seconds=strategy.compute_delay(execution.attempt_count))
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.exceptions import ExecutionError


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Bounded retry policy.

    ``max_attempts`` counts every executor invocation, the first one
    included, so ``max_attempts=1`` never retries.
    """
    policy: RetryPolicy
    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 300.0
    jitter_ratio: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries: fail on the first error."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1, jitter_ratio=0.0)

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 5.0) -> 'RetryStrategy':
        """Fixed delay between attempts."""
        return cls(
            policy=RetryPolicy.FIXED,
            max_attempts=max_attempts,
            base_delay=delay,
            max_delay=delay,
            jitter_ratio=0.0,
        )

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 5,
        base_delay: float = 2.0,
        max_delay: float = 300.0,
        jitter_ratio: float = 0.2,
    ) -> 'RetryStrategy':
        """Exponential backoff: base * 2^attempt, capped, plus jitter."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter_ratio=jitter_ratio,
        )

    @classmethod
    def from_settings(cls, settings, max_attempts: Optional[int] = None) -> 'RetryStrategy':
        """Build the engine default, optionally overriding the attempt budget."""
        return cls.exponential(
            max_attempts=max_attempts or settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            jitter_ratio=settings.RETRY_JITTER_RATIO,
        )

    def with_max_attempts(self, max_attempts: Optional[int]) -> 'RetryStrategy':
        if not max_attempts:
            return self
        return RetryStrategy(
            policy=self.policy,
            max_attempts=max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter_ratio=self.jitter_ratio,
            rng=self.rng,
        )

    def compute_delay(self, attempt: int) -> float:
        """Backoff in seconds after ``attempt`` attempts have been made (1-based).

        The first retry waits ``base_delay * 2``, the second ``base_delay * 4``
        and so on, never more than ``max_delay`` before jitter.
        """
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** attempt)

        delay = min(delay, self.max_delay)

        if self.jitter_ratio > 0 and delay > 0:
            delay += self.rng.uniform(0, delay * self.jitter_ratio)

        return round(delay, 3)

    def should_retry(self, attempt: int, error: Optional[Exception] = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` attempts."""
        if self.policy == RetryPolicy.NONE:
            return False

        if attempt >= self.max_attempts:
            return False

        if error is None:
            return True

        return isinstance(error, ExecutionError) and error.transient

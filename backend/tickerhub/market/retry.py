"""Retry policies for upstream reconnects and REST calls."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """How long to wait before retry number ``attempt`` (1-based), and whether to.

    ``max_attempts=None`` retries forever. ``jitter`` is a fraction of the
    computed delay applied symmetrically (0.1 → ±10%).
    """

    base_delay: float
    factor: float = 1.0
    max_delay: float | None = None
    max_attempts: int | None = None
    jitter: float = 0.0

    @classmethod
    def fixed(cls, delay: float, max_attempts: int | None = None) -> RetryPolicy:
        return cls(base_delay=delay, max_attempts=max_attempts)

    @classmethod
    def exponential(
        cls,
        base: float = 0.5,
        factor: float = 2.0,
        max_delay: float = 30.0,
        max_attempts: int | None = None,
        jitter: float = 0.0,
    ) -> RetryPolicy:
        return cls(base_delay=base, factor=factor, max_delay=max_delay, max_attempts=max_attempts, jitter=jitter)

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * self.factor ** max(attempt - 1, 0)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)


# Connectivity loss must never be fatal to the feed.
STREAM_RECONNECT_POLICY = RetryPolicy.fixed(5.0)
REST_RETRY_POLICY = RetryPolicy.exponential(base=0.5, factor=2.0, max_delay=4.0, max_attempts=2)

"""Exponential backoff with jitter for job retries."""

import random
from datetime import timedelta
from typing import Callable

# 2**62 ms already dwarfs any sane max delay
_MAX_EXPONENT = 62


class BackoffPolicy:
    """Computes retry delays: ``min(base * 2**attempt, max)`` with uniform jitter."""

    def __init__(
        self,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 60000,
        jitter_ratio: float = 0.25,
        rng: Callable[[], float] = random.random,
    ):
        if base_delay_ms <= 0 or max_delay_ms <= 0:
            raise ValueError("Backoff delays must be positive")
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_ratio = jitter_ratio
        self.rng = rng

    @classmethod
    def from_settings(cls, config) -> "BackoffPolicy":
        return cls(
            base_delay_ms=config.retry_base_delay_ms,
            max_delay_ms=config.retry_max_delay_ms,
        )

    def base_delay(self, attempt_count: int) -> int:
        """Capped exponential delay in milliseconds, before jitter."""
        exponent = min(max(attempt_count, 0), _MAX_EXPONENT)
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)

    def next_delay_ms(self, attempt_count: int) -> int:
        """Jittered delay in milliseconds, never above ``max_delay_ms``."""
        capped = self.base_delay(attempt_count)
        jitter = capped * self.jitter_ratio * (self.rng() * 2 - 1)
        return max(0, min(round(capped + jitter), self.max_delay_ms))

    def next_delay(self, attempt_count: int) -> timedelta:
        return timedelta(milliseconds=self.next_delay_ms(attempt_count))

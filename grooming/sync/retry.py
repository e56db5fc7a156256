"""Exponential backoff for retryable sync failures."""

import random
from dataclasses import dataclass

from .config import SyncConfig


@dataclass(frozen=True)
class RetryPolicy:
    """delay = min(cap, base * 2^attempt) plus up to ``jitter_ratio`` of random jitter.

    ``attempt`` is zero-based: the delay before the second try uses attempt 0.
    """

    max_attempts: int = 3
    base_seconds: float = 60.0
    max_seconds: float = 900.0
    jitter_ratio: float = 0.1

    @classmethod
    def from_config(cls, config: SyncConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_seconds=config.backoff_base_seconds,
            max_seconds=config.backoff_max_seconds,
            jitter_ratio=config.backoff_jitter_ratio,
        )

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        rng = rng or random
        delay = min(self.max_seconds, self.base_seconds * (2 ** max(attempt, 0)))
        if self.jitter_ratio > 0:
            delay += rng.uniform(0, delay * self.jitter_ratio)
        return delay

    def exhausted(self, attempts: int) -> bool:
        """True once a job has used up its attempt budget."""
        return attempts >= self.max_attempts

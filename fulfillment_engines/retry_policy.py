"""
Retry Policy Engine - bounded exponential backoff.

Pure functions with no I/O.  Used by the dispatcher outbox and by the
automatic invoice retry.  ``attempts`` counts failures so far; the delay
before the next try doubles with each failure up to a cap.

    delay(attempts) = min(cap, base * 2 ** (attempts - 1))

Usage:
    policy = RetryPolicy(max_attempts=5, base_delay_seconds=2, max_delay_seconds=300)
    policy.delay_for(1)          # 2.0
    policy.delay_for(3)          # 8.0
    policy.is_exhausted(5)       # True
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait after the ``attempts``-th failure."""
        if attempts < 1:
            return 0.0
        # Cap the exponent so huge attempt counts cannot overflow
        exponent = min(attempts - 1, 32)
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** exponent))

    def next_attempt_at(self, failed_at: datetime, attempts: int) -> datetime:
        return failed_at + timedelta(seconds=self.delay_for(attempts))

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

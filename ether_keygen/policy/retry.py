# MIT License © 2025 Motohiro Suzuki
"""
policy/retry.py

RetryPolicy: bounded exponential backoff for bus sends.

- attempts=1 -> no retry (first failure is final)
- delay before attempt n (n >= 2) = min(base_delay * multiplier**(n-2), max_delay)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Knobs:
      - attempts  : total tries including the first (>= 1)
      - base_delay: seconds before the first retry
      - max_delay : cap for any single backoff
      - multiplier: growth factor between retries
    """

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if int(self.attempts) < 1:
            raise ValueError("attempts must be >= 1")
        if float(self.base_delay) < 0 or float(self.max_delay) < 0:
            raise ValueError("delays must be >= 0")
        if float(self.multiplier) < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait before `attempt` (1-based). The first attempt never waits."""
        if attempt <= 1:
            return 0.0
        d = float(self.base_delay) * (float(self.multiplier) ** (attempt - 2))
        return min(d, float(self.max_delay))

    def should_retry(self, attempt: int) -> bool:
        return attempt < int(self.attempts)


NO_RETRY = RetryPolicy(attempts=1)

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Exponential backoff: base, 2*base, 4*base, ... (no jitter).

    max_attempts counts executions, so 3 means one run plus two retries.
    """

    max_attempts: int = 3
    base_delay_s: float = 5.0
    cap_s: float | None = None

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = float(self.base_delay_s) * (2 ** max(0, int(attempt) - 1))
        if self.cap_s is not None:
            delay = min(float(self.cap_s), delay)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return int(attempt) >= int(self.max_attempts)

"""
Retry policy: exponential backoff and the terminal-attempt rule.
"""

from dataclasses import dataclass
from datetime import timedelta

from jobqueue.config.settings import Settings


def is_terminal(attempts: int, max_attempts: int) -> bool:
    """A job with ``attempts`` executions behind it may not run again."""
    return attempts >= max_attempts


@dataclass(frozen=True)
class RetryPolicy:
    """
    Deterministic exponential backoff.

    ``next_delay(attempts)`` is ``base_delay_s * 2**attempts`` capped at
    ``max_delay_s``, where ``attempts`` already counts the failure being
    scheduled. With the defaults a job is retried after 2s, then 4s, then 8s.
    """

    base_delay_s: float = 1.0
    max_delay_s: float = 3600.0

    def __post_init__(self) -> None:
        if self.base_delay_s <= 0:
            raise ValueError("base_delay_s must be positive")
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must not be lower than base_delay_s")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_s=settings.job_backoff_base_s,
            max_delay_s=settings.job_max_backoff_s,
        )

    def next_delay(self, attempts: int) -> timedelta:
        if attempts < 0:
            raise ValueError("attempts must not be negative")
        # Cap the exponent so huge attempt counts don't overflow the float
        exponent = min(attempts, 64)
        return timedelta(seconds=min(self.base_delay_s * 2**exponent, self.max_delay_s))

    def is_terminal(self, attempts: int, max_attempts: int) -> bool:
        return is_terminal(attempts, max_attempts)

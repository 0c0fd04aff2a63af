"""
Retry policy for broker calls and file-level transfer retries.

The default policy makes a single attempt. Retries are opt-in: callers
raise max_retries and the policy spaces attempts with exponential backoff.
"""
import random
from dataclasses import dataclass


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_retries: int = 0
    initial_delay_ms: int = 500
    max_delay_ms: int = 10000
    jitter: bool = True

    def __post_init__(self):
        """Validate retry policy parameters."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be non-negative")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate the delay before a retry.

        Args:
            attempt: Retry number (1-based)

        Returns:
            Delay in seconds
        """
        if attempt <= 0:
            return 0.0

        delay = min(self.initial_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)

        if self.jitter and delay > 0:
            jitter_range = int(delay * 0.1)
            delay += random.randint(-jitter_range, jitter_range)
            delay = max(0, delay)

        return delay / 1000.0

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after `attempt` attempts failed."""
        return attempt <= self.max_retries

"""
Retry policy for queue deliveries.

Backoff calculation:
    delay = base_delay * (multiplier ^ (attempt - 1)), capped at max_delay
    Example with defaults: 2s -> 4s -> 8s

A job gets at most `max_attempts` deliveries; after that its queue entry
is dead-lettered.
"""

from dataclasses import dataclass

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SECONDS = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and exponential backoff."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    multiplier: float = DEFAULT_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """
        Seconds to wait before the next delivery after `attempt` failed.

        Args:
            attempt: 1-based number of the delivery that just failed
        """
        exponent = max(attempt - 1, 0)
        return min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

    def is_exhausted(self, attempts: int) -> bool:
        """True when no further delivery is allowed."""
        return attempts >= self.max_attempts

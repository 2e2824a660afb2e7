"""Retry delays for failed sync ticks."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay to wait before retrying after consecutive failures.

    Attributes:
        base_delay: Delay in seconds after the first failure
        backoff: "fixed" or "exponential"
        max_delay: Upper bound in seconds for exponential backoff
    """

    base_delay: float
    backoff: str = "fixed"
    max_delay: float = 300.0

    SUPPORTED_BACKOFFS: ClassVar[set[str]] = {"fixed", "exponential"}

    def __post_init__(self) -> None:
        """Validate the policy."""
        if self.backoff not in self.SUPPORTED_BACKOFFS:
            raise ValueError(
                f"Unsupported backoff: {self.backoff}. "
                f"Supported: {', '.join(sorted(self.SUPPORTED_BACKOFFS))}"
            )
        if self.base_delay <= 0:
            raise ValueError(f"Retry delay must be positive, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"Max retry delay ({self.max_delay}) is below base delay ({self.base_delay})"
            )

    def delay_for(self, attempt: int) -> float:
        """Return the delay before retry number `attempt` (1-based)."""
        if self.backoff == "fixed" or attempt <= 1:
            return self.base_delay
        # Exponent capped so long outages cannot overflow the float
        return min(self.base_delay * (2 ** min(attempt - 1, 32)), self.max_delay)

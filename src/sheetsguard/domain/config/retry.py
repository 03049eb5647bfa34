"""Retry configuration model."""

from typing import Literal, Optional

from pydantic import BaseModel

from sheetsguard.domain.models.retry_policy import RetryPolicy


class RetryConfig(BaseModel):
    """Configuration for retry logic.

    Values are not range-checked here: RetryPolicy clamps out-of-range
    values to the nearest valid one instead of rejecting them.

    Attributes:
        preset: Named starting point (default, conservative, aggressive, none)
        max_attempts: Maximum number of retries after the initial call
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound for a single delay in seconds
        backoff_multiplier: Exponential backoff multiplier
        jitter: Random jitter fraction (0.0-1.0)
    """

    preset: Literal["default", "conservative", "aggressive", "none"] = "default"
    max_attempts: Optional[int] = None
    base_delay: Optional[float] = None
    max_delay: Optional[float] = None
    backoff_multiplier: Optional[float] = None
    jitter: Optional[float] = None

    def to_policy(self) -> RetryPolicy:
        """Build the runtime retry policy (preset values overridden field by field)"""
        base = RetryPolicy.preset(self.preset)
        return RetryPolicy(
            max_attempts=base.max_attempts if self.max_attempts is None else self.max_attempts,
            base_delay=base.base_delay if self.base_delay is None else self.base_delay,
            max_delay=base.max_delay if self.max_delay is None else self.max_delay,
            backoff_multiplier=(
                base.backoff_multiplier if self.backoff_multiplier is None else self.backoff_multiplier
            ),
            jitter_fraction=base.jitter_fraction if self.jitter is None else self.jitter,
        )

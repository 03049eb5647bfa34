"""Rate limit configuration model."""

from pydantic import BaseModel, Field


class RateLimitConfig(BaseModel):
    """Configuration for client-side rate limiting.

    Attributes:
        enabled: Whether calls are rate limited at all
        max_calls: Maximum calls admitted in any trailing window
        window_seconds: Window length in seconds
    """

    enabled: bool = True
    max_calls: int = Field(100, gt=0)
    window_seconds: float = Field(100.0, gt=0.0)

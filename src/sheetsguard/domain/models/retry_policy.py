"""RetryPolicy model - immutable backoff configuration with jittered delays"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Shortest sleep ever scheduled between two attempts (seconds)
MIN_DELAY = 0.1


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result):
        return default
    return result


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy.

    Construction never fails: every field is clamped to its nearest valid
    value (``max_attempts >= 0``, ``base_delay >= MIN_DELAY``,
    ``max_delay >= base_delay``, ``backoff_multiplier >= 1.0``,
    ``0 <= jitter_fraction <= 1``).

    Attributes:
        max_attempts: Retries allowed after the initial call
        base_delay: Delay before the first retry in seconds
        max_delay: Cap applied before jitter in seconds
        backoff_multiplier: Growth factor between consecutive delays
        jitter_fraction: Relative size of the random perturbation
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.1

    def __post_init__(self):
        max_attempts = max(0, _as_int(self.max_attempts, 3))
        base_delay = max(MIN_DELAY, _as_float(self.base_delay, 1.0))
        max_delay = max(base_delay, _as_float(self.max_delay, 60.0))
        backoff_multiplier = max(1.0, _as_float(self.backoff_multiplier, 2.0))
        jitter_fraction = min(1.0, max(0.0, _as_float(self.jitter_fraction, 0.1)))

        object.__setattr__(self, "max_attempts", max_attempts)
        object.__setattr__(self, "base_delay", base_delay)
        object.__setattr__(self, "max_delay", max_delay)
        object.__setattr__(self, "backoff_multiplier", backoff_multiplier)
        object.__setattr__(self, "jitter_fraction", jitter_fraction)

    @classmethod
    def preset(cls, name: str) -> "RetryPolicy":
        """Get a named preset (default, conservative, aggressive, none)

        Raises:
            ValueError: If the preset name is unknown
        """
        try:
            return PRESETS[name.lower()]
        except KeyError:
            available = ", ".join(PRESETS)
            raise ValueError(f"Unknown retry preset: {name}. Available presets: {available}") from None

    def backoff_delay(self, attempt: int) -> float:
        """Delay for a retry attempt before jitter is applied

        Args:
            attempt: 0-based retry index

        Returns:
            Capped exponential delay, or 0 outside ``[0, max_attempts)``
        """
        if attempt < 0 or attempt >= self.max_attempts:
            return 0.0
        try:
            delay = self.base_delay * (self.backoff_multiplier**attempt)
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def delay_for_attempt(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before a retry attempt, with jitter

        Args:
            attempt: 0-based retry index
            rng: Random source (module-level ``random`` if None)

        Returns:
            Delay in seconds (never below MIN_DELAY), or 0 outside ``[0, max_attempts)``
        """
        if attempt < 0 or attempt >= self.max_attempts:
            return 0.0
        capped = self.backoff_delay(attempt)
        source = rng if rng is not None else random
        jitter = capped * self.jitter_fraction * source.uniform(-1.0, 1.0)
        return max(MIN_DELAY, capped + jitter)

    def all_delays(self, rng: Optional[random.Random] = None) -> List[float]:
        """Delays for every retry attempt, in order"""
        return [self.delay_for_attempt(attempt, rng) for attempt in range(self.max_attempts)]


PRESETS: Dict[str, RetryPolicy] = {
    "default": RetryPolicy(),
    "conservative": RetryPolicy(
        max_attempts=5,
        base_delay=2.0,
        max_delay=120.0,
        backoff_multiplier=2.5,
        jitter_fraction=0.2,
    ),
    "aggressive": RetryPolicy(
        max_attempts=2,
        base_delay=0.5,
        max_delay=10.0,
        backoff_multiplier=1.5,
        jitter_fraction=0.05,
    ),
    "none": RetryPolicy(max_attempts=0),
}

"""Attempt model - runtime record of one failed execution attempt"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Attempt:
    """A failed attempt and the delay scheduled before the next one"""

    index: int  # 0-based retry index
    error: Optional[BaseException]
    delay_before_next_retry: float  # Seconds

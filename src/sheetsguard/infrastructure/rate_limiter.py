"""Sliding window rate limiter.

Admits at most ``max_calls`` calls in any trailing window of
``window_seconds``. Each caller reserves the earliest admissible slot
under a short critical section and then waits for it outside the lock,
so callers are admitted in arrival order and nobody waits forever.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_CALLS = 100
DEFAULT_WINDOW_SECONDS = 100.0


class RateLimiter:
    """Sliding window rate limiter shared by threads and asyncio tasks.

    One instance belongs to one client; independent clients never share
    a window.
    """

    def __init__(
        self,
        max_calls: int = DEFAULT_MAX_CALLS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initializes the rate limiter.

        Args:
            max_calls: Maximum number of calls allowed in the window.
            window_seconds: The window length in seconds.
            clock: Monotonic time source.
            sleep: Blocking sleep used by ``acquire_blocking``.
            async_sleep: Coroutine sleep used by ``acquire`` (asyncio.sleep if None).

        Raises:
            ValueError: If either limit is not positive.
        """
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self._max_calls = int(max_calls)
        self._window = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._async_sleep = async_sleep or asyncio.sleep
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()
        logger.info(f"RateLimiter initialized: {self._max_calls} calls / {self._window} seconds")

    def _prune(self, now: float) -> None:
        """Drop timestamps that left the window. Caller holds the lock."""
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _next_slot(self, now: float) -> float:
        """Earliest admissible call time. Caller holds the lock."""
        slot = max(now, self._timestamps[-1]) if self._timestamps else now
        if len(self._timestamps) >= self._max_calls:
            slot = max(slot, self._timestamps[-self._max_calls] + self._window)
        return slot

    def _reserve(self) -> Tuple[float, float]:
        """Record a slot for the caller and return (slot, delay until slot)"""
        with self._lock:
            now = self._clock()
            self._prune(now)
            slot = self._next_slot(now)
            self._timestamps.append(slot)
        return slot, slot - now

    def _release(self, slot: float) -> None:
        """Give back a slot reserved by a caller that stopped waiting"""
        with self._lock:
            # Already pruned if the slot left the window
            if slot in self._timestamps:
                self._timestamps.remove(slot)

    async def acquire(self) -> float:
        """Wait until a call is permitted.

        Returns:
            Seconds spent waiting.
        """
        slot, delay = self._reserve()
        if delay > 0:
            logger.debug(f"Rate limit reached. Waiting for {delay:.2f} seconds.")
            try:
                await self._async_sleep(delay)
            except BaseException:
                self._release(slot)
                raise
        return max(0.0, delay)

    def acquire_blocking(self) -> float:
        """Blocking variant of ``acquire`` for thread-based callers."""
        slot, delay = self._reserve()
        if delay > 0:
            logger.debug(f"Rate limit reached. Blocking for {delay:.2f} seconds.")
            try:
                self._sleep(delay)
            except BaseException:
                self._release(slot)
                raise
        return max(0.0, delay)

    def try_acquire(self) -> bool:
        """Record a call only if it is permitted right now."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if self._next_slot(now) > now:
                return False
            self._timestamps.append(now)
            return True

    def wait_time(self) -> float:
        """Estimate the wait before a new call would be admitted."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            return max(0.0, self._next_slot(now) - now)

    @property
    def queue_depth(self) -> int:
        """Number of callers holding a reservation in the future."""
        with self._lock:
            now = self._clock()
            return sum(1 for ts in self._timestamps if ts > now)

    @property
    def calls_in_window(self) -> int:
        """Calls admitted (or reserved) within the current window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)

    @property
    def max_calls(self) -> int:
        return self._max_calls

    @property
    def window_seconds(self) -> float:
        return self._window

    def __enter__(self):
        self.acquire_blocking()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return None

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

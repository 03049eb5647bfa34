"""Retry execution using tenacity.

One initial call, then up to ``policy.max_attempts`` retries separated by
jittered exponential delays. Non-retryable errors propagate on first sight,
cancellation always propagates, and exhausting the budget raises
RetryExhaustedError chained to the most recent failure.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from sheetsguard.domain.errors import RetryExhaustedError, is_retryable as default_is_retryable
from sheetsguard.domain.models.attempt import Attempt
from sheetsguard.domain.models.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryObserver = Callable[[int, BaseException, float], None]


class wait_retry_policy(wait_base):
    """Tenacity wait strategy backed by a RetryPolicy.

    Tenacity counts attempts from 1 including the initial call, so the
    first retry uses ``policy.delay_for_attempt(0)``.
    """

    def __init__(self, policy: RetryPolicy, rng: Optional[random.Random] = None):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.policy.delay_for_attempt(retry_state.attempt_number - 1, self.rng)


def _retry_condition(predicate: RetryPredicate) -> Callable[[BaseException], bool]:
    def _condition(exception: BaseException) -> bool:
        # Cancellation, KeyboardInterrupt and friends are never retried
        if not isinstance(exception, Exception):
            return False
        return bool(predicate(exception))

    return _condition


class RetryExecutor:
    """Runs an operation with bounded retries.

    Stateless apart from its configuration, so one executor can be shared
    by any number of concurrent callers.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        is_retryable: Optional[RetryPredicate] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], None]] = None,
        async_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        name: str = "Remote call",
    ):
        """Initialize executor

        Args:
            policy: Retry policy (RetryPolicy() defaults if None)
            is_retryable: Default retry predicate (built-in classification if None)
            rng: Random source for jitter
            sleep: Blocking sleep used by ``call`` (tenacity default if None)
            async_sleep: Coroutine sleep used by ``execute`` (asyncio.sleep if None)
            name: Label used in log messages
        """
        self.policy = policy or RetryPolicy()
        self.is_retryable = is_retryable or default_is_retryable
        self.rng = rng
        self.sleep = sleep
        self.async_sleep = async_sleep or asyncio.sleep
        self.name = name

    def _before_sleep(self, on_retry: Optional[RetryObserver]) -> Callable[[RetryCallState], None]:
        def _log_and_notify(retry_state: RetryCallState) -> None:
            if retry_state.outcome is None:
                return
            attempt = Attempt(
                index=retry_state.attempt_number - 1,
                error=retry_state.outcome.exception(),
                delay_before_next_retry=retry_state.next_action.sleep if retry_state.next_action else 0.0,
            )
            logger.warning(
                f"{self.name} error (attempt {attempt.index + 1}/{self.policy.max_attempts}): "
                f"{attempt.error!r}. Retrying in {attempt.delay_before_next_retry:.2f}s..."
            )
            if on_retry is None:
                return
            try:
                on_retry(attempt.index, attempt.error, attempt.delay_before_next_retry)
            except Exception:
                logger.exception(f"Retry observer failed for {self.name}")

        return _log_and_notify

    def _retrying_options(
        self,
        is_retryable: Optional[RetryPredicate],
        on_retry: Optional[RetryObserver],
    ) -> dict:
        return {
            "stop": stop_after_attempt(self.policy.max_attempts + 1),
            "wait": wait_retry_policy(self.policy, self.rng),
            "retry": retry_if_exception(_retry_condition(is_retryable or self.is_retryable)),
            "before_sleep": self._before_sleep(on_retry),
            "reraise": False,
        }

    def _surface(self, retry_error: RetryError) -> BaseException:
        """Turn tenacity's RetryError into the error the caller sees"""
        last_attempt = retry_error.last_attempt
        error = last_attempt.exception()
        retries = last_attempt.attempt_number - 1
        if retries == 0:
            # max_attempts == 0: the initial failure propagates untouched
            return error
        logger.error(f"{self.name} failed after {retries} retries: {error!r}")
        exhausted = RetryExhaustedError(error, retries)
        exhausted.__cause__ = error
        return exhausted

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[RetryPredicate] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> T:
        """Await ``operation()`` with retries

        Args:
            operation: Zero-argument coroutine function
            is_retryable: Retry predicate overriding the executor default
            on_retry: Observer called before each sleep with (attempt, error, delay)

        Returns:
            The first successful result

        Raises:
            RetryExhaustedError: If every allowed retry failed
            Exception: The original error if it is not retryable
            asyncio.CancelledError: If the surrounding task is cancelled
        """
        # AsyncRetrying only awaits coroutine functions, not lambdas returning awaitables
        async def _operation() -> T:
            return await operation()

        retrying = AsyncRetrying(sleep=self.async_sleep, **self._retrying_options(is_retryable, on_retry))
        try:
            return await retrying(_operation)
        except RetryError as retry_error:
            error = self._surface(retry_error)
        raise error

    def call(
        self,
        operation: Callable[[], T],
        is_retryable: Optional[RetryPredicate] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> T:
        """Blocking twin of ``execute`` for thread-based callers"""
        options = self._retrying_options(is_retryable, on_retry)
        if self.sleep is not None:
            options["sleep"] = self.sleep
        retrying = Retrying(**options)
        try:
            return retrying(operation)
        except RetryError as retry_error:
            error = self._surface(retry_error)
        raise error


def with_retry(
    executor: RetryExecutor,
    is_retryable: Optional[RetryPredicate] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Create a retry decorator for coroutine functions.

    Args:
        executor: Executor providing the policy
        is_retryable: Optional retry predicate for the decorated function

    Returns:
        Decorator
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapped(*args: Any, **kwargs: Any) -> T:
            return await executor.execute(lambda: func(*args, **kwargs), is_retryable=is_retryable)

        return wrapped

    return decorator

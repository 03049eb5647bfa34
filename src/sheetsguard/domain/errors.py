"""Error taxonomy for remote tabular-data API calls.

Every error carries a ``retryable`` flag that the default retry
classification reads. Unknown exception types are never retried.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import requests


class SheetsError(Exception):
    """Base class for all errors raised by sheetsguard."""

    retryable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# Retryable-transient


class RequestTimeoutError(SheetsError):
    """Remote call did not complete in time."""

    retryable = True

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


class ConnectionLostError(SheetsError):
    """Connection could not be established or was dropped."""

    retryable = True


class RateLimitedError(SheetsError):
    """Remote side rejected the call with HTTP 429."""

    retryable = True

    def __init__(self, retry_after: Optional[float] = None):
        if retry_after is not None:
            message = f"Rate limit exceeded. Retry after {int(retry_after)} seconds."
        else:
            message = "Rate limit exceeded. Retry later."
        super().__init__(message)
        self.retry_after = retry_after


class ServerError(SheetsError):
    """Transient 5xx response."""

    retryable = True

    def __init__(self, status_code: int, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(f"API error ({status_code}): {message}")
        self.status_code = status_code
        self.details = details


class InvalidResponseError(SheetsError):
    """Response body could not be understood; usually a transient server issue."""

    retryable = True


# Non-retryable


class BadRequestError(SheetsError):
    """HTTP 400 - the request itself is wrong."""


class AuthenticationError(SheetsError):
    """HTTP 401 - credentials missing, invalid or expired."""


class AccessDeniedError(SheetsError):
    """HTTP 403 - insufficient permissions."""


class NotFoundError(SheetsError):
    """HTTP 404 - resource does not exist."""


class QuotaExceededError(SheetsError):
    """Billing-period quota exhausted; retrying will not help."""


class MalformedInputError(SheetsError):
    """Caller supplied data that cannot be sent."""


class ClientError(SheetsError):
    """Any other 4xx response."""

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(f"API error ({status_code}): {message}")
        self.status_code = status_code


class RetryExhaustedError(SheetsError):
    """Operation still failing after every allowed retry.

    Attributes:
        last_error: Most recent failure of the operation
        attempts: Number of retries performed (initial call excluded)
    """

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"Failed after {attempts} retries: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


def from_http_status(status_code: int, payload: Optional[Dict[str, Any]] = None) -> SheetsError:
    """Map an HTTP error status and JSON error body to a SheetsError.

    Args:
        status_code: HTTP status code (>= 400)
        payload: Decoded JSON body, if any ({"error": {"message": ..., "retryAfter": ...}})

    Returns:
        Classified error instance
    """
    details: Optional[Dict[str, Any]] = None
    message = "Unknown error"
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        details = payload["error"]
        message = str(details.get("message", message))

    if status_code == 400:
        return BadRequestError(message)
    if status_code == 401:
        return AuthenticationError(message)
    if status_code == 403:
        if details and details.get("status") == "RESOURCE_EXHAUSTED":
            return QuotaExceededError(message)
        return AccessDeniedError(message)
    if status_code == 404:
        return NotFoundError(message)
    if status_code == 429:
        retry_after = details.get("retryAfter") if details else None
        try:
            retry_after = float(retry_after) if retry_after is not None else None
        except (TypeError, ValueError):
            retry_after = None
        return RateLimitedError(retry_after=retry_after)
    if status_code >= 500:
        return ServerError(status_code, message, details)
    return ClientError(status_code, message)


def is_retryable(exception: BaseException) -> bool:
    """Default retry classification.

    Cancellation and other BaseException subclasses are never retried.
    Unrecognised exception types are treated as non-retryable.
    """
    if isinstance(exception, asyncio.CancelledError) or not isinstance(exception, Exception):
        return False
    if isinstance(exception, SheetsError):
        return exception.retryable
    if isinstance(exception, requests.exceptions.HTTPError):
        status_code = exception.response.status_code if exception.response is not None else None
        return status_code is None or status_code == 429 or status_code >= 500
    if isinstance(exception, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    if isinstance(exception, (TimeoutError, ConnectionError)):
        return True
    return False

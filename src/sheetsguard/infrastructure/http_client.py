"""Shared HTTP transport (requests) with error classification.

The transport performs exactly one HTTP exchange per ``send``; retries,
rate limiting and caching are layered on top by the caller.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from sheetsguard.domain.errors import (
    ConnectionLostError,
    InvalidResponseError,
    RequestTimeoutError,
    from_http_status,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str]


@dataclass(frozen=True)
class HTTPRequest:
    """A single JSON request against the remote API"""

    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class Transport(ABC):
    """Performs one remote call and returns the decoded JSON body"""

    @abstractmethod
    async def send(self, request: HTTPRequest) -> Any:
        """Send request

        Raises:
            SheetsError: Classified failure
        """
        pass


def _json_or_none(response: requests.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


class RequestsTransport(Transport):
    """Transport backed by a ``requests.Session``.

    Blocking I/O runs in a worker thread so the event loop stays free.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        token_provider: Optional[TokenProvider] = None,
    ):
        """Initialize transport

        Args:
            session: Session to reuse (a new one if None)
            timeout: Per-request timeout in seconds
            token_provider: Returns a bearer token for each request (no auth header if None)
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token_provider = token_provider

    def _headers(self, request: HTTPRequest) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if request.json is not None:
            headers["Content-Type"] = "application/json"
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider()}"
        headers.update(request.headers)
        return headers

    def send_blocking(self, request: HTTPRequest) -> Any:
        """Perform the HTTP exchange on the calling thread"""
        logger.debug(f"HTTP {request.method} {request.url}")
        try:
            response = self.session.request(
                request.method,
                request.url,
                params=request.params,
                json=request.json,
                headers=self._headers(request),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(f"Request timed out: {request.method} {request.url}") from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectionLostError(f"Network error: {e}") from e

        if response.status_code >= 400:
            error = from_http_status(response.status_code, _json_or_none(response))
            logger.debug(f"HTTP {response.status_code} from {request.url}: {error}")
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Server returned invalid JSON: {e}") from e

    async def send(self, request: HTTPRequest) -> Any:
        return await asyncio.to_thread(self.send_blocking, request)

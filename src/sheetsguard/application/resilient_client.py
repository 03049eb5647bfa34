"""Resilient client - composes rate limiting, retries, caching and batching around a transport"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from sheetsguard.application.batch_optimizer import BatchOptimizer
from sheetsguard.application.chunked_processor import ChunkedProcessor, Rows, cancel_and_wait
from sheetsguard.domain.config.app import AppConfig
from sheetsguard.domain.errors import InvalidResponseError, MalformedInputError
from sheetsguard.domain.models.chunk import Chunk
from sheetsguard.domain.models.range_request import Batch, RangeRequest
from sheetsguard.infrastructure.cache import ResponseCache, resource_key, values_key
from sheetsguard.infrastructure.http_client import HTTPRequest, Transport
from sheetsguard.infrastructure.rate_limiter import RateLimiter
from sheetsguard.infrastructure.retry import RetryExecutor, RetryObserver, RetryPredicate

logger = logging.getLogger(__name__)

BatchRequestBuilder = Callable[[Batch], HTTPRequest]
BatchResponseSplitter = Callable[[Batch, Any], Sequence[Any]]
ChunkRequestBuilder = Callable[[Chunk], HTTPRequest]

_MISSING = object()


class ResilientClient:
    """Client wrapping every remote call in the resilience layers.

    Every call first waits for the rate limiter and then runs through the
    retry executor; each retry attempt waits for the limiter again.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[AppConfig] = None,
        *,
        retry_executor: Optional[RetryExecutor] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        batch_optimizer: Optional[BatchOptimizer] = None,
        chunked_processor: Optional[ChunkedProcessor] = None,
    ):
        """Initialize client

        Args:
            transport: Transport performing single remote calls
            config: Application configuration (defaults if None)
            retry_executor: Executor to use instead of one built from config
            rate_limiter: Limiter to use instead of one built from config
            cache: Cache to use instead of one built from config
            batch_optimizer: Optimizer to use instead of one built from config
            chunked_processor: Processor to use instead of one built from config
        """
        self.transport = transport
        self.config = config or AppConfig()

        self.retry_executor = retry_executor or RetryExecutor(self.config.retry.to_policy())
        if rate_limiter is None and self.config.rate_limit.enabled:
            rate_limiter = RateLimiter(
                max_calls=self.config.rate_limit.max_calls,
                window_seconds=self.config.rate_limit.window_seconds,
            )
        self.rate_limiter = rate_limiter
        self.cache = cache or ResponseCache(
            default_ttl=self.config.cache.ttl,
            max_entries=self.config.cache.max_entries,
            enabled=self.config.cache.enabled,
        )
        self.batch_optimizer = batch_optimizer or BatchOptimizer.from_config(self.config.batch)
        self.chunked_processor = chunked_processor or ChunkedProcessor.from_config(self.config.chunking)

    async def _attempt(self, request: HTTPRequest) -> Any:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        return await self.transport.send(request)

    async def send(
        self,
        request: HTTPRequest,
        is_retryable: Optional[RetryPredicate] = None,
        on_retry: Optional[RetryObserver] = None,
    ) -> Any:
        """Send one request with rate limiting and retries

        Raises:
            RetryExhaustedError: If every allowed retry failed
            SheetsError: Non-retryable failure from the transport
        """
        return await self.retry_executor.execute(
            lambda: self._attempt(request),
            is_retryable=is_retryable,
            on_retry=on_retry,
        )

    async def read(
        self,
        resource_id: str,
        target: str,
        request: HTTPRequest,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Read a range, answering from the cache when possible

        Args:
            resource_id: Resource the range belongs to
            target: Range reference (opaque)
            request: Request fetching the range on a cache miss
            options: Read options that change the response (part of the cache key)
        """
        key = values_key(resource_id, target, options)
        return await self._cached_fetch(resource_id, key, request, self.config.cache.values_ttl)

    async def read_resource(
        self,
        resource_id: str,
        request: HTTPRequest,
        targets: Optional[Sequence[str]] = None,
        include_grid_data: bool = False,
        fields: Optional[str] = None,
    ) -> Any:
        """Read whole-resource metadata, answering from the cache when possible"""
        key = resource_key(resource_id, targets, include_grid_data, fields)
        return await self._cached_fetch(resource_id, key, request, self.config.cache.resource_ttl)

    async def _cached_fetch(self, resource_id: str, key: str, request: HTTPRequest, ttl: float) -> Any:
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        generation = self.cache.generation(resource_id)
        result = await self.send(request)
        self.cache.put(key, result, ttl=ttl, generation=generation)
        return result

    async def write(self, resource_id: str, request: HTTPRequest) -> Any:
        """Send a mutating request and drop cached reads of the resource

        The cache is invalidated even when the write fails: a timed-out
        write may still have been applied.
        """
        try:
            return await self.send(request)
        finally:
            self.cache.invalidate_resource(resource_id)

    async def batch_read(
        self,
        requests: Sequence[RangeRequest],
        build_request: BatchRequestBuilder,
        split_response: BatchResponseSplitter,
        options: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        """Read many ranges with as few remote calls as possible

        Cached ranges are answered locally; the rest is planned into
        batches, one retried remote call per batch, and every fetched range
        is cached on its own.

        Args:
            requests: Read requests (each with a resource id)
            build_request: Builds the remote request for a batch
            split_response: Splits a batch response into one value per request, in batch order
            options: Read options shared by all requests

        Returns:
            One value per input request, in input order

        Raises:
            MalformedInputError: If a request is a write or has no resource id
            InvalidResponseError: If a batch response does not match its batch
        """
        for request in requests:
            if request.is_write or request.resource_id is None:
                raise MalformedInputError(f"batch_read needs read requests with a resource id: {request.target}")

        results: List[Any] = [None] * len(requests)
        misses: List[RangeRequest] = []
        positions: Dict[int, Deque[int]] = defaultdict(deque)
        for index, request in enumerate(requests):
            cached = self.cache.get(values_key(request.resource_id, request.target, options), _MISSING)
            if cached is not _MISSING:
                results[index] = cached
                continue
            misses.append(request)
            positions[id(request)].append(index)

        if not misses:
            return results

        generations = {rid: self.cache.generation(rid) for rid in {r.resource_id for r in misses}}
        batches, stats = self.batch_optimizer.plan_with_stats(misses)
        logger.info(
            f"Reading {len(misses)} ranges in {stats.batch_count} calls "
            f"({len(requests) - len(misses)} served from cache)"
        )

        async def fetch(batch: Batch) -> None:
            response = await self.send(build_request(batch))
            values = list(split_response(batch, response))
            if len(values) != len(batch):
                raise InvalidResponseError(
                    f"Batch response holds {len(values)} values for {len(batch)} ranges"
                )
            for request, value in zip(batch, values):
                results[positions[id(request)].popleft()] = value
                self.cache.put(
                    values_key(request.resource_id, request.target, options),
                    value,
                    ttl=self.config.cache.values_ttl,
                    generation=generations[request.resource_id],
                )

        tasks = [asyncio.create_task(fetch(batch)) for batch in batches]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Stop sibling batches before the caller sees the error
            await cancel_and_wait(tasks)
            raise
        return results

    async def batch_write(
        self,
        requests: Sequence[RangeRequest],
        build_request: BatchRequestBuilder,
    ) -> List[Any]:
        """Send write requests in planned batches

        Returns:
            One response per batch, in plan order
        """
        batches = self.batch_optimizer.plan(requests)
        resource_ids = {request.resource_id for request in requests if request.resource_id is not None}
        try:
            responses = []
            for batch in batches:
                responses.append(await self.send(build_request(batch)))
            return responses
        finally:
            for resource_id in resource_ids:
                self.cache.invalidate_resource(resource_id)

    async def process_large_dataset(self, data: Rows, processor: Callable[[Chunk], Any]) -> List[Any]:
        """Apply ``processor`` chunk by chunk (see ChunkedProcessor)"""
        return await self.chunked_processor.process_large_dataset(data, processor)

    async def write_large_dataset(
        self,
        resource_id: str,
        data: Rows,
        build_request: ChunkRequestBuilder,
    ) -> List[Any]:
        """Upload a dataset chunk by chunk, one retried call per chunk

        Returns:
            One response per chunk, in chunk order
        """
        try:
            return await self.chunked_processor.process_large_dataset(
                data, lambda chunk: self.send(build_request(chunk))
            )
        finally:
            self.cache.invalidate_resource(resource_id)

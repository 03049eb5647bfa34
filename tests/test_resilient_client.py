"""Tests for ResilientClient composition"""

import asyncio

import pytest

from sheetsguard.application.resilient_client import ResilientClient
from sheetsguard.domain.config import AppConfig
from sheetsguard.domain.errors import (
    InvalidResponseError,
    MalformedInputError,
    NotFoundError,
    RetryExhaustedError,
    ServerError,
)
from sheetsguard.domain.models.range_request import RangeRequest, RequestKind
from sheetsguard.domain.models.retry_policy import RetryPolicy
from sheetsguard.infrastructure.cache import values_key
from sheetsguard.infrastructure.http_client import HTTPRequest, Transport
from sheetsguard.infrastructure.rate_limiter import RateLimiter
from sheetsguard.infrastructure.retry import RetryExecutor


class FakeTransport(Transport):
    """Transport answering from a queue of results (exceptions are raised)"""

    def __init__(self, *results, default=None):
        self.results = list(results)
        self.default = default
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        if self.results:
            result = self.results.pop(0)
        else:
            result = self.default(request) if callable(self.default) else self.default
        if isinstance(result, BaseException):
            raise result
        return result


async def _no_sleep(delay):
    return None


def _client(transport, max_attempts=3, **kwargs):
    executor = RetryExecutor(RetryPolicy(max_attempts=max_attempts, jitter_fraction=0.0), async_sleep=_no_sleep)
    config = AppConfig(rate_limit={"enabled": False})
    return ResilientClient(transport, config, retry_executor=executor, **kwargs)


def _get(url="http://example.test/values/A1"):
    return HTTPRequest("GET", url)


def _batch_get(batch):
    return HTTPRequest("GET", "http://example.test/values:batchGet", params={"ranges": list(batch.targets)})


def _split(batch, response):
    return response["valueRanges"]


class TestConstruction:
    """Tests for building collaborators from configuration"""

    def test_defaults_from_config(self):
        config = AppConfig(
            retry={"preset": "aggressive"},
            rate_limit={"max_calls": 10, "window_seconds": 5},
            cache={"ttl": 30, "max_entries": 7},
            batch={"max_batch_size": 4, "min_batch_size": 1},
            chunking={"max_rows_in_memory": 50},
        )
        client = ResilientClient(FakeTransport(), config)

        assert client.retry_executor.policy == RetryPolicy.preset("aggressive")
        assert client.rate_limiter.max_calls == 10
        assert client.rate_limiter.window_seconds == 5.0
        assert client.cache.default_ttl == 30
        assert client.cache.max_entries == 7
        assert client.batch_optimizer.max_batch_size == 4
        assert client.chunked_processor.max_rows_in_memory == 50

    def test_rate_limiting_can_be_disabled(self):
        client = ResilientClient(FakeTransport(), AppConfig(rate_limit={"enabled": False}))
        assert client.rate_limiter is None


class TestSend:
    """Tests for rate limited, retried sends"""

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        transport = FakeTransport(ServerError(503), ServerError(500), {"ok": True})
        assert await _client(transport).send(_get()) == {"ok": True}
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        transport = FakeTransport(default=ServerError(500))
        with pytest.raises(RetryExhaustedError):
            await _client(transport, max_attempts=2).send(_get())
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_is_sent_once(self):
        transport = FakeTransport(NotFoundError("gone"))
        with pytest.raises(NotFoundError):
            await _client(transport).send(_get())
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_every_attempt_is_rate_limited(self):
        limiter = RateLimiter(100, 60.0)
        transport = FakeTransport(ServerError(500), {"ok": True})
        await _client(transport, rate_limiter=limiter).send(_get())
        assert limiter.calls_in_window == 2


class TestRead:
    """Tests for cached single-range reads"""

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self):
        transport = FakeTransport(default={"values": [[1]]})
        client = _client(transport)

        first = await client.read("s1", "A1", _get())
        second = await client.read("s1", "A1", _get())

        assert first == second == {"values": [[1]]}
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_cached_none_response_is_a_hit(self):
        transport = FakeTransport(default=None)
        client = _client(transport)

        assert await client.read("s1", "A1", _get()) is None
        assert await client.read("s1", "A1", _get()) is None

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_options_are_part_of_the_key(self):
        transport = FakeTransport(default={"values": []})
        client = _client(transport)

        await client.read("s1", "A1", _get(), options={"valueRenderOption": "FORMULA"})
        await client.read("s1", "A1", _get())

        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_resource_metadata_is_cached_separately(self):
        transport = FakeTransport(default={"sheets": []})
        client = _client(transport)

        await client.read_resource("s1", _get("http://example.test/s1"))
        await client.read_resource("s1", _get("http://example.test/s1"))
        await client.read_resource("s1", _get("http://example.test/s1?grid"), include_grid_data=True)

        assert len(transport.requests) == 2

        await client.write("s1", HTTPRequest("POST", "http://example.test/s1:batchUpdate"))
        await client.read_resource("s1", _get("http://example.test/s1"))
        assert len(transport.requests) == 4

    @pytest.mark.asyncio
    async def test_write_invalidates_resource(self):
        transport = FakeTransport(default={"values": [[1]]})
        client = _client(transport)

        await client.read("s1", "A1", _get())
        await client.write("s1", HTTPRequest("PUT", "http://example.test/values/A1", json={"values": [[2]]}))
        await client.read("s1", "A1", _get())

        assert [r.method for r in transport.requests] == ["GET", "PUT", "GET"]

    @pytest.mark.asyncio
    async def test_failed_write_still_invalidates(self):
        transport = FakeTransport({"values": [[1]]}, NotFoundError("gone"))
        client = _client(transport)

        await client.read("s1", "A1", _get())
        with pytest.raises(NotFoundError):
            await client.write("s1", HTTPRequest("PUT", "http://example.test"))

        assert client.cache.get(values_key("s1", "A1")) is None

    @pytest.mark.asyncio
    async def test_read_racing_a_write_does_not_cache_stale_data(self):
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowReadTransport(FakeTransport):
            async def send(self, request):
                self.requests.append(request)
                if request.method == "GET":
                    started.set()
                    await release.wait()
                    return {"values": [["old"]]}
                return {}

        transport = SlowReadTransport()
        client = _client(transport)

        read_task = asyncio.create_task(client.read("s1", "A1", _get()))
        await started.wait()
        await client.write("s1", HTTPRequest("PUT", "http://example.test"))
        release.set()
        await read_task

        assert client.cache.get(values_key("s1", "A1")) is None


class TestBatchRead:
    """Tests for batched multi-range reads"""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        def respond(request):
            return {"valueRanges": [f"value of {t}" for t in request.params["ranges"]]}

        transport = FakeTransport(default=respond)
        client = _client(transport)
        requests = [
            RangeRequest("A1", resource_id="s2"),
            RangeRequest("B1", resource_id="s1"),
            RangeRequest("C1", resource_id="s2"),
        ]

        results = await client.batch_read(requests, _batch_get, _split)

        assert results == ["value of A1", "value of B1", "value of C1"]
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_cached_ranges_are_not_fetched(self):
        def respond(request):
            return {"valueRanges": list(request.params["ranges"])}

        transport = FakeTransport("cached A1", default=respond)
        client = _client(transport)
        await client.read("s1", "A1", _get())

        results = await client.batch_read(
            [RangeRequest("A1", resource_id="s1"), RangeRequest("B1", resource_id="s1")],
            _batch_get,
            _split,
        )

        assert transport.requests[-1].params == {"ranges": ["B1"]}
        assert results == ["cached A1", "B1"]

    @pytest.mark.asyncio
    async def test_fetched_ranges_are_cached_individually(self):
        transport = FakeTransport(default=lambda r: {"valueRanges": [[["x"]], [["y"]]]})
        client = _client(transport)

        await client.batch_read(
            [RangeRequest("A1", resource_id="s1"), RangeRequest("B1", resource_id="s1")],
            _batch_get,
            _split,
        )

        assert client.cache.get(values_key("s1", "B1")) == [["y"]]

    @pytest.mark.asyncio
    async def test_duplicate_requests(self):
        request = RangeRequest("A1", resource_id="s1")
        transport = FakeTransport(default=lambda r: {"valueRanges": ["a", "a"]})

        results = await _client(transport).batch_read([request, request], _batch_get, _split)

        assert results == ["a", "a"]

    @pytest.mark.asyncio
    async def test_mismatched_response_is_rejected(self):
        transport = FakeTransport(default=lambda r: {"valueRanges": []})
        client = _client(transport)
        with pytest.raises(InvalidResponseError, match="0 values for 1 ranges"):
            await client.batch_read([RangeRequest("A1", resource_id="s1")], _batch_get, _split)
        assert client.cache.get(values_key("s1", "A1")) is None

    @pytest.mark.asyncio
    async def test_cached_none_values_are_not_fetched_again(self):
        transport = FakeTransport(default=lambda r: {"valueRanges": [None]})
        client = _client(transport)
        requests = [RangeRequest("A1", resource_id="s1")]

        assert await client.batch_read(requests, _batch_get, _split) == [None]
        assert await client.batch_read(requests, _batch_get, _split) == [None]

        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_failed_batch_cancels_sibling_batches(self):
        completed = []
        cancelled = []

        class MixedTransport(FakeTransport):
            async def send(self, request):
                self.requests.append(request)
                if request.url.endswith("/bad"):
                    raise NotFoundError("gone")
                try:
                    await asyncio.sleep(0.2)
                except asyncio.CancelledError:
                    cancelled.append(request.url)
                    raise
                completed.append(request.url)
                return {"valueRanges": ["value"]}

        client = _client(MixedTransport())
        requests = [RangeRequest("A1", resource_id="bad"), RangeRequest("A1", resource_id="good")]

        with pytest.raises(NotFoundError):
            await client.batch_read(
                requests,
                lambda batch: HTTPRequest("GET", f"http://example.test/{batch.resource_id}"),
                _split,
            )

        assert cancelled == ["http://example.test/good"]
        await asyncio.sleep(0.3)
        assert completed == []
        assert client.cache.get(values_key("good", "A1")) is None

    @pytest.mark.asyncio
    async def test_write_requests_rejected(self):
        request = RangeRequest("A1", kind=RequestKind.WRITE, resource_id="s1")
        with pytest.raises(MalformedInputError):
            await _client(FakeTransport()).batch_read([request], _batch_get, _split)

    @pytest.mark.asyncio
    async def test_batch_write_invalidates_every_resource(self):
        transport = FakeTransport(default={})
        client = _client(transport)
        client.cache.put(values_key("s1", "A1"), "cached")
        client.cache.put(values_key("s2", "A1"), "cached")

        responses = await client.batch_write(
            [
                RangeRequest("A1", kind=RequestKind.WRITE, payload=((1,),), resource_id="s1"),
                RangeRequest("A1", kind=RequestKind.WRITE, payload=((2,),), resource_id="s2"),
            ],
            lambda batch: HTTPRequest("POST", "http://example.test/values:batchUpdate"),
        )

        assert len(responses) == 2
        assert len(client.cache) == 0


class TestLargeDatasets:
    """Tests for chunked uploads"""

    @pytest.mark.asyncio
    async def test_write_large_dataset_sends_one_call_per_chunk(self):
        transport = FakeTransport(default={"updatedRows": 100})
        client = _client(transport)
        client.chunked_processor.max_rows_in_memory = 100
        data = [[i, i * 2] for i in range(500)]

        responses = await client.write_large_dataset(
            "s1",
            data,
            lambda chunk: HTTPRequest("PUT", f"http://example.test/values/A{chunk.start_row + 1}", json=chunk.to_list()),
        )

        assert len(responses) == 5
        assert [len(r.json) for r in transport.requests] == [100] * 5

    @pytest.mark.asyncio
    async def test_chunk_upload_is_retried(self):
        transport = FakeTransport(ServerError(503), default={})
        client = _client(transport)
        client.chunked_processor.max_rows_in_memory = 10
        data = [[i] for i in range(20)]

        await client.write_large_dataset("s1", data, lambda chunk: HTTPRequest("PUT", "http://example.test"))

        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_process_large_dataset_delegates(self):
        client = _client(FakeTransport())
        assert await client.process_large_dataset([[1], [2]], lambda chunk: chunk.row_count) == [2]

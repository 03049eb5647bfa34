"""Memory-bounded processing of large 2-D datasets.

Large row sets are cut into contiguous chunks bounded by a row count and
optionally a cell count, and processed one chunk (or a bounded number of
chunks) at a time.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, TypeVar, Union

from sheetsguard.domain.config.chunking import ChunkingConfig
from sheetsguard.domain.models.chunk import Chunk

logger = logging.getLogger(__name__)

T = TypeVar("T")

Rows = Sequence[Sequence[Any]]
ChunkProcessorFn = Callable[[Chunk], Union[T, Awaitable[T]]]

# Rough per-row and per-column bookkeeping overhead in bytes
ROW_OVERHEAD_BYTES = 64
COLUMN_OVERHEAD_BYTES = 8


class ChunkedProcessor:
    """Splits and processes large datasets in bounded slices"""

    def __init__(
        self,
        max_rows_in_memory: int = 10000,
        max_columns_in_memory: int = 100,
        large_dataset_cell_threshold: int = 100000,
        use_streaming: bool = True,
        max_workers: int = 1,
    ):
        """Initialize processor

        Args:
            max_rows_in_memory: Row count above which data is chunked; default chunk size
            max_columns_in_memory: Column count above which data is chunked
            large_dataset_cell_threshold: Cell count above which data is chunked
            use_streaming: Build chunks lazily while processing
            max_workers: Chunks processed concurrently (1 = sequential)

        Raises:
            ValueError: If any bound is not positive
        """
        for name, value in (
            ("max_rows_in_memory", max_rows_in_memory),
            ("max_columns_in_memory", max_columns_in_memory),
            ("large_dataset_cell_threshold", large_dataset_cell_threshold),
            ("max_workers", max_workers),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1")

        self.max_rows_in_memory = max_rows_in_memory
        self.max_columns_in_memory = max_columns_in_memory
        self.large_dataset_cell_threshold = large_dataset_cell_threshold
        self.use_streaming = use_streaming
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config: ChunkingConfig) -> "ChunkedProcessor":
        """Create processor from validated configuration"""
        return cls(
            max_rows_in_memory=config.max_rows_in_memory,
            max_columns_in_memory=config.max_columns_in_memory,
            large_dataset_cell_threshold=config.large_dataset_cell_threshold,
            use_streaming=config.use_streaming,
            max_workers=config.max_workers,
        )

    def should_chunk(self, row_count: int, column_count: int) -> bool:
        """Check if a dataset of this shape should be processed in chunks"""
        return (
            row_count > self.max_rows_in_memory
            or column_count > self.max_columns_in_memory
            or row_count * column_count > self.large_dataset_cell_threshold
        )

    def rows_per_chunk(self, column_count: int) -> int:
        """Rows per chunk for rows of this width under both the row and cell bounds"""
        if column_count <= 0:
            return self.max_rows_in_memory
        return max(1, min(self.max_rows_in_memory, self.large_dataset_cell_threshold // column_count))

    @staticmethod
    def shape(data: Rows) -> tuple:
        """(rows, widest row) of a dataset"""
        return len(data), max((len(row) for row in data), default=0)

    def estimate_memory_usage(self, row_count: int, column_count: int, average_cell_size: int = 50) -> int:
        """Rough memory estimate in bytes for a dataset of this shape"""
        cell_memory = row_count * column_count * average_cell_size
        overhead = row_count * ROW_OVERHEAD_BYTES + column_count * COLUMN_OVERHEAD_BYTES
        return cell_memory + overhead

    def iter_chunks(
        self,
        data: Iterable[Sequence[Any]],
        max_rows_per_chunk: Optional[int] = None,
        max_cells_per_chunk: Optional[int] = None,
    ) -> Iterator[Chunk]:
        """Lazily yield contiguous chunks in original order

        A chunk holds at most ``max_rows_per_chunk`` rows and, when given,
        at most ``max_cells_per_chunk`` cells. A single row wider than the
        cell bound still forms its own chunk.

        Raises:
            ValueError: If a bound is not positive
        """
        max_rows = self.max_rows_in_memory if max_rows_per_chunk is None else max_rows_per_chunk
        if max_rows < 1:
            raise ValueError("max_rows_per_chunk must be >= 1")
        if max_cells_per_chunk is not None and max_cells_per_chunk < 1:
            raise ValueError("max_cells_per_chunk must be >= 1")

        index = 0
        start_row = 0
        buffer: List[Sequence[Any]] = []
        cells = 0
        for row in data:
            row_cells = len(row)
            over_cells = max_cells_per_chunk is not None and cells + row_cells > max_cells_per_chunk
            if buffer and (len(buffer) >= max_rows or over_cells):
                yield Chunk(index=index, start_row=start_row, rows=buffer)
                index += 1
                start_row += len(buffer)
                buffer = []
                cells = 0
            buffer.append(row)
            cells += row_cells
        if buffer:
            yield Chunk(index=index, start_row=start_row, rows=buffer)

    def split(
        self,
        data: Iterable[Sequence[Any]],
        max_rows_per_chunk: Optional[int] = None,
        max_cells_per_chunk: Optional[int] = None,
    ) -> List[Chunk]:
        """Split rows into contiguous, non-overlapping chunks

        Concatenating ``chunk.rows`` of the result in order gives back the
        original rows.
        """
        return list(self.iter_chunks(data, max_rows_per_chunk, max_cells_per_chunk))

    async def process_large_dataset(self, data: Rows, processor: ChunkProcessorFn) -> List[T]:
        """Apply ``processor`` to every chunk of ``data``

        Small datasets are handed over whole as a single chunk. The
        processor may be a plain function or a coroutine function. With
        ``max_workers > 1`` up to that many chunks run concurrently.

        Returns:
            One result per chunk, in chunk order
        """
        row_count, column_count = self.shape(data)
        if not self.should_chunk(row_count, column_count):
            return [await _apply(processor, Chunk(index=0, start_row=0, rows=data))]

        chunks: Iterable[Chunk] = self.iter_chunks(data, max_cells_per_chunk=self.large_dataset_cell_threshold)
        if not self.use_streaming:
            chunks = list(chunks)
        logger.info(
            f"Processing {row_count}x{column_count} dataset in chunks of up to "
            f"{self.max_rows_in_memory} rows / {self.large_dataset_cell_threshold} cells"
        )

        if self.max_workers == 1:
            results: List[T] = []
            for chunk in chunks:
                results.append(await _apply(processor, chunk))
                # Let other tasks run between chunks
                await asyncio.sleep(0)
            return results
        return await self._process_concurrently(chunks, processor)

    async def _process_concurrently(self, chunks: Iterable[Chunk], processor: ChunkProcessorFn) -> List[T]:
        results: Dict[int, T] = {}

        async def run(chunk: Chunk) -> None:
            results[chunk.index] = await _apply(processor, chunk)

        pending: Set[asyncio.Task] = set()
        try:
            for chunk in chunks:
                if len(pending) >= self.max_workers:
                    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                    _raise_first_failure(done)
                pending.add(asyncio.create_task(run(chunk)))
            if pending:
                done, pending = await asyncio.wait(pending)
                _raise_first_failure(done)
        except BaseException:
            await cancel_and_wait(pending)
            raise
        return [results[index] for index in range(len(results))]


def _raise_first_failure(done: Set[asyncio.Task]) -> None:
    """Raise the first failure among finished tasks, retrieving every exception"""
    failures = [task.exception() for task in done if not task.cancelled() and task.exception() is not None]
    for extra in failures[1:]:
        logger.debug(f"Suppressed additional chunk failure: {extra!r}")
    if failures:
        raise failures[0]


async def cancel_and_wait(tasks: Iterable[asyncio.Task]) -> None:
    """Cancel tasks and wait until they have finished unwinding"""
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def _apply(processor: ChunkProcessorFn, chunk: Chunk) -> Any:
    result = processor(chunk)
    if inspect.isawaitable(result):
        result = await result
    return result

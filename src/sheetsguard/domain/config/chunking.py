"""Chunked processing configuration model."""

from pydantic import BaseModel, Field


class ChunkingConfig(BaseModel):
    """Configuration for memory-bounded processing of large datasets.

    Attributes:
        max_rows_in_memory: Row count above which data is chunked; also the chunk size
        max_columns_in_memory: Column count above which data is chunked
        large_dataset_cell_threshold: Cell count above which data is chunked
        use_streaming: Produce chunks lazily instead of materialising the split
        max_workers: Chunks processed concurrently (1 = sequential)
    """

    max_rows_in_memory: int = Field(10000, gt=0)
    max_columns_in_memory: int = Field(100, gt=0)
    large_dataset_cell_threshold: int = Field(100000, gt=0)
    use_streaming: bool = True
    max_workers: int = Field(1, gt=0, le=64)

"""Batch planning configuration model."""

from pydantic import BaseModel, Field, model_validator


class BatchConfig(BaseModel):
    """Configuration for the batch optimizer.

    Attributes:
        max_batch_size: Maximum requests per remote call
        min_batch_size: Batches below this size are merged when possible
        merge_adjacent_ranges: Whether small adjacent batches are merged
        sort_ranges: Whether requests are regrouped by their group key
    """

    max_batch_size: int = Field(100, gt=0)
    min_batch_size: int = Field(2, gt=0)
    merge_adjacent_ranges: bool = True
    sort_ranges: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "BatchConfig":
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")
        return self

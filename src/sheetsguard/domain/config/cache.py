"""Response cache configuration model."""

from typing import Optional

from pydantic import BaseModel, Field


class CacheConfig(BaseModel):
    """Configuration for the response cache.

    Attributes:
        enabled: Whether read responses are cached
        ttl: Default time-to-live in seconds
        values_ttl: TTL for range value reads
        resource_ttl: TTL for whole-resource metadata reads
        max_entries: LRU bound (None = unbounded)
    """

    enabled: bool = True
    ttl: float = Field(300.0, gt=0.0)
    values_ttl: float = Field(60.0, gt=0.0)
    resource_ttl: float = Field(600.0, gt=0.0)
    max_entries: Optional[int] = Field(1000, gt=0)

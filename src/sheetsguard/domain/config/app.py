"""Main application configuration model."""

from pydantic import BaseModel, ConfigDict, Field

from sheetsguard.domain.config.batch import BatchConfig
from sheetsguard.domain.config.cache import CacheConfig
from sheetsguard.domain.config.chunking import ChunkingConfig
from sheetsguard.domain.config.rate_limit import RateLimitConfig
from sheetsguard.domain.config.retry import RetryConfig


class AppConfig(BaseModel):
    """Main application configuration.

    Root model aggregating all configuration sections. Validation runs at
    load time so misconfiguration fails before the first remote call.

    Attributes:
        retry: Retry logic configuration
        rate_limit: Client-side rate limiting configuration
        cache: Response cache configuration
        batch: Batch planning configuration
        chunking: Large dataset processing configuration
    """

    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "retry": {"preset": "conservative", "max_attempts": 4},
                "rate_limit": {"max_calls": 60, "window_seconds": 60.0},
                "cache": {"enabled": True, "ttl": 300, "max_entries": 500},
                "batch": {"max_batch_size": 100, "min_batch_size": 2},
                "chunking": {"max_rows_in_memory": 5000, "max_workers": 4},
            }
        },
    )

"""Configuration models with Pydantic validation."""

from sheetsguard.domain.config.app import AppConfig
from sheetsguard.domain.config.batch import BatchConfig
from sheetsguard.domain.config.cache import CacheConfig
from sheetsguard.domain.config.chunking import ChunkingConfig
from sheetsguard.domain.config.rate_limit import RateLimitConfig
from sheetsguard.domain.config.retry import RetryConfig

__all__ = [
    "AppConfig",
    "BatchConfig",
    "CacheConfig",
    "ChunkingConfig",
    "RateLimitConfig",
    "RetryConfig",
]

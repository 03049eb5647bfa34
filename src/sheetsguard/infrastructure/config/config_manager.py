"""Configuration manager for loading and validating .sheetsguard.yml"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from sheetsguard.domain.config import (
    AppConfig,
    BatchConfig,
    CacheConfig,
    ChunkingConfig,
    RateLimitConfig,
    RetryConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".sheetsguard.yml"


class ConfigurationError(Exception):
    """Configuration validation error."""

    pass


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, field, converter)
ENV_OVERRIDES: Dict[str, tuple] = {
    "SHEETSGUARD_RETRY_PRESET": ("retry", "preset", str),
    "SHEETSGUARD_RETRY_MAX_ATTEMPTS": ("retry", "max_attempts", int),
    "SHEETSGUARD_RATE_LIMIT_MAX_CALLS": ("rate_limit", "max_calls", int),
    "SHEETSGUARD_RATE_LIMIT_WINDOW": ("rate_limit", "window_seconds", float),
    "SHEETSGUARD_CACHE_ENABLED": ("cache", "enabled", _parse_bool),
    "SHEETSGUARD_CACHE_TTL": ("cache", "ttl", float),
}


class ConfigManager:
    """Manages configuration from .sheetsguard.yml and environment variables

    Loads configuration with validation using Pydantic models. Configuration priority:
    1. Default values (defined in Pydantic models)
    2. .sheetsguard.yml file (searched from current directory upwards)
    3. Environment variables (SHEETSGUARD_*)
    4. CLI arguments (handled by CLI layer)
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager

        Args:
            config_path: Path to .sheetsguard.yml (searches from current dir if None)

        Raises:
            ConfigurationError: If configuration validation fails
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)
        self.config_path = config_path or self._find_config_file()
        try:
            self.config: AppConfig = self._load_config()
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                msg = error["msg"]
                errors.append(f"  - {field}: {msg}")
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(errors)) from e

    def _find_config_file(self) -> Optional[Path]:
        """Find .sheetsguard.yml starting from current directory

        Returns:
            Path to config file or None if not found
        """
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            config_file = parent / CONFIG_FILE_NAME
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return config_file
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")
        return None

    def _load_config(self) -> AppConfig:
        """Load configuration from file and environment, then validate

        Raises:
            ValidationError: If configuration is invalid
            ConfigurationError: If the file cannot be parsed
        """
        config_dict: Dict[str, Any] = {}

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to read {self.config_path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigurationError(f"{self.config_path} must contain a mapping at top level")
            config_dict = self._merge_config(config_dict, file_config)
            logger.info(f"Loaded configuration from {self.config_path}")

        config_dict = self._apply_env_overrides(config_dict)
        return AppConfig(**config_dict)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries"""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply SHEETSGUARD_* environment variable overrides

        Raises:
            ConfigurationError: If a variable cannot be converted
        """
        for env_name, (section, field, convert) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                value = convert(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e
            section_dict = config.setdefault(section, {})
            if not isinstance(section_dict, dict):
                raise ConfigurationError(f"Configuration section '{section}' must be a mapping")
            section_dict[field] = value
            logger.debug(f"{env_name} overrides {section}.{field}")
        return config

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration"""
        return self.config.retry

    def get_rate_limit_config(self) -> RateLimitConfig:
        """Get rate limit configuration"""
        return self.config.rate_limit

    def get_cache_config(self) -> CacheConfig:
        """Get cache configuration"""
        return self.config.cache

    def get_batch_config(self) -> BatchConfig:
        """Get batch configuration"""
        return self.config.batch

    def get_chunking_config(self) -> ChunkingConfig:
        """Get chunking configuration"""
        return self.config.chunking

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)

        Args:
            key: Configuration key (e.g., "cache.ttl" or "cache")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self.config.model_dump()
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

"""Sluice configuration management.

This package provides type-safe configuration models with validation,
environment variable resolution and file loading.

Example:
    >>> from sluice.config import EngineConfig
    >>> config = EngineConfig.from_file("sluice.yaml")
"""

from .models import (
    AdvisorConfig,
    BackendConfig,
    BaseConfig,
    CacheConfig,
    CatalogConfig,
    EngineConfig,
    LoggingConfig,
    PoolConfig,
    SearchConfig,
)

__all__ = [
    "AdvisorConfig",
    "BackendConfig",
    "BaseConfig",
    "CacheConfig",
    "CatalogConfig",
    "EngineConfig",
    "LoggingConfig",
    "PoolConfig",
    "SearchConfig",
]

"""Backing store factory.

Holds the default registry with the built-in stores and creates the store an
engine configuration asks for.
"""

from typing import Optional

from sluice.config.models import BackendConfig
from sluice.logging import get_logger
from .base import BaseBackingStore
from .connectors.sqlite import SQLiteBackingStore
from .registry import BackingStoreRegistry

logger = get_logger("sluice.database.factory")

_default_registry: Optional[BackingStoreRegistry] = None


def get_default_registry() -> BackingStoreRegistry:
    """Return the registry of built-in backing stores, creating it on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = BackingStoreRegistry()
        _default_registry.register("sqlite", SQLiteBackingStore, "SQLite via aiosqlite")
    return _default_registry


def create_backing_store(
    config: BackendConfig,
    registry: Optional[BackingStoreRegistry] = None,
) -> BaseBackingStore:
    """Create an uninitialized backing store for ``config``.

    Args:
        config: Backend configuration
        registry: Registry to resolve the platform in; defaults to the
            built-in registry

    Raises:
        ConfigurationError: If the platform is not registered
    """
    registry = registry or get_default_registry()
    logger.debug("Creating backing store", platform=config.platform, backend=config.id)
    return registry.create(config)

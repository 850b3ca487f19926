"""Backing store registry.

Maps platform identifiers to backing store classes so the concrete store is
chosen at startup from configuration.
"""

from typing import Dict, List, Optional, Type

from sluice.config.models import BackendConfig
from sluice.core.exceptions import ConfigurationError, ErrorCodes
from sluice.logging import get_logger
from .base import BaseBackingStore


class BackingStoreRegistry:
    """Registry for backing store types.

    Example:
        >>> registry = BackingStoreRegistry()
        >>> registry.register("sqlite", SQLiteBackingStore)
        >>> store = registry.create(BackendConfig(database="app.db"))
    """

    def __init__(self) -> None:
        self.logger = get_logger("sluice.database.registry")
        self._stores: Dict[str, Type[BaseBackingStore]] = {}
        self._metadata: Dict[str, Dict[str, str]] = {}

    def register(
        self,
        platform: str,
        store_class: Type[BaseBackingStore],
        description: Optional[str] = None,
    ) -> None:
        """Register a backing store class.

        Raises:
            ConfigurationError: If the class is not a backing store
        """
        if not (isinstance(store_class, type) and issubclass(store_class, BaseBackingStore)):
            raise ConfigurationError(
                f"{store_class!r} must extend BaseBackingStore",
                code=ErrorCodes.CONFIG_INVALID,
                context={"platform": platform},
            )

        if platform in self._stores:
            self.logger.warning(
                "Overriding existing backing store registration",
                platform=platform,
                existing_class=self._stores[platform].__name__,
                new_class=store_class.__name__,
            )

        self._stores[platform] = store_class
        self._metadata[platform] = {
            "class_name": store_class.__name__,
            "description": description or f"{platform} backing store",
            "version": getattr(store_class, "version", "unknown"),
            "platform": platform,
        }
        self.logger.debug("Backing store registered", platform=platform, class_name=store_class.__name__)

    def get_store_class(self, platform: str) -> Type[BaseBackingStore]:
        """Return the class registered for a platform.

        Raises:
            ConfigurationError: If the platform is not registered
        """
        if platform not in self._stores:
            raise ConfigurationError(
                f"No backing store registered for platform: {platform}",
                code=ErrorCodes.CONFIG_NOT_FOUND,
                context={"platform": platform, "available_platforms": list(self._stores)},
            )
        return self._stores[platform]

    def create(self, config: BackendConfig) -> BaseBackingStore:
        """Instantiate the backing store for a configuration (uninitialized)."""
        store = self.get_store_class(config.platform)(config)
        self.logger.info(
            "Backing store created",
            platform=config.platform,
            backend=config.id,
            database=config.database,
        )
        return store

    def is_platform_supported(self, platform: str) -> bool:
        return platform in self._stores

    def get_available_platforms(self) -> List[str]:
        return list(self._stores)

    def list_stores(self) -> Dict[str, Dict[str, str]]:
        return {platform: metadata.copy() for platform, metadata in self._metadata.items()}

    def unregister(self, platform: str) -> None:
        if platform not in self._stores:
            raise ConfigurationError(
                f"Cannot unregister unknown platform: {platform}",
                code=ErrorCodes.CONFIG_NOT_FOUND,
                context={"platform": platform},
            )
        del self._stores[platform]
        del self._metadata[platform]

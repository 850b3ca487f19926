"""Base classes and protocols for Sluice components.

This module provides the foundational base classes that the pool, cache,
catalog, backing stores and engine inherit from, giving them a consistent
configuration, lifecycle and health-reporting surface.

Classes:
    BaseComponent: Generic base class for all Sluice components
    AsyncComponent: Base class for components with async lifecycle
    ComponentRegistry: Dependency-ordered lifecycle coordination

Protocols:
    AsyncInitializable: Protocol for components that require async initialization
    Monitorable: Protocol for components that report health and metrics

Example:
    >>> class SqliteBackingStore(AsyncComponent[BackendConfig]):
    ...     async def _async_initialize(self) -> None:
    ...         await self._probe()
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import (
    Any,
    ClassVar,
    Dict,
    Generic,
    List,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

import structlog

from .exceptions import (
    ConfigurationError,
    SluiceException,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Configuration type
T = TypeVar("T")


@runtime_checkable
class AsyncInitializable(Protocol):
    """Protocol for components requiring async initialization."""

    async def initialize(self) -> None:
        ...

    async def cleanup(self) -> None:
        ...

    @property
    def is_initialized(self) -> bool:
        ...


@runtime_checkable
class Monitorable(Protocol):
    """Protocol for components that expose health and metrics."""

    def get_health_status(self) -> Dict[str, Any]:
        ...

    def get_metrics(self) -> Dict[str, Any]:
        ...


class BaseComponent(Generic[T], ABC):
    """Base class for all Sluice components.

    Provides configuration ownership, creation time tracking, a structured
    logger and default health/metrics reporting.

    Type Parameters:
        T: Type of configuration object this component accepts

    Attributes:
        component_name: Name of the component for logging and identification
        version: Component version for compatibility checking
    """

    component_name: ClassVar[str] = "BaseComponent"
    version: ClassVar[str] = "1.0.0"

    def __init__(self, config: T) -> None:
        """Initialize base component.

        Args:
            config: Configuration object for this component

        Raises:
            ValidationError: If configuration is None
            ConfigurationError: If configuration fails validation
        """
        if config is None:
            raise ValidationError(
                "Configuration cannot be None",
                code="CONFIG_NULL",
                context={"component": self.component_name},
            )

        self._config: T = config
        self._initialized: bool = False
        self._creation_time: float = time.time()
        self._logger = structlog.get_logger(self.__class__.__name__)

        if not self.validate_config():
            raise ConfigurationError(
                f"Invalid configuration for {self.component_name}",
                code="CONFIG_INVALID",
                context={"component": self.component_name},
            )

    @property
    def config(self) -> T:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def uptime(self) -> float:
        """Time since component creation in seconds."""
        return time.time() - self._creation_time

    def validate_config(self) -> bool:
        """Validate component configuration.

        Subclasses override this to add component-specific checks.

        Returns:
            True if configuration is valid
        """
        return self._config is not None

    def get_health_status(self) -> Dict[str, Any]:
        """Get component health status.

        Returns:
            Dictionary containing component health information
        """
        return {
            "component": self.component_name,
            "version": self.version,
            "initialized": self._initialized,
            "uptime_seconds": self.uptime,
            "status": "healthy" if self._initialized else "not_initialized",
        }

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "component": self.component_name,
            "uptime_seconds": self.uptime,
            "initialized": self._initialized,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"name={self.component_name!r}, "
            f"initialized={self._initialized}, "
            f"uptime={self.uptime:.2f}s)"
        )


class AsyncComponent(BaseComponent[T]):
    """Base class for async-capable components.

    Initialization and cleanup are serialized by locks and are idempotent:
    initializing twice or cleaning up an uninitialized component is a no-op.
    """

    def __init__(self, config: T) -> None:
        super().__init__(config)
        self._initialization_lock = asyncio.Lock()
        self._cleanup_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize component asynchronously.

        Raises:
            SluiceException: If initialization fails. Sluice exceptions raised
                by ``_async_initialize`` propagate unchanged; anything else is
                wrapped with code ``INIT_FAILED``.
        """
        async with self._initialization_lock:
            if self._initialized:
                return

            self._logger.info("Initializing component", component=self.component_name)

            try:
                await self._async_initialize()
            except SluiceException as e:
                self._logger.error(
                    "Component initialization failed",
                    component=self.component_name,
                    error=str(e),
                )
                raise
            except Exception as e:
                self._logger.error(
                    "Component initialization failed",
                    component=self.component_name,
                    error=str(e),
                )
                raise SluiceException(
                    f"Failed to initialize {self.component_name}",
                    code="INIT_FAILED",
                    context={"component": self.component_name},
                    cause=e,
                ) from e

            self._initialized = True
            self._logger.info("Component initialized successfully", component=self.component_name)

    async def cleanup(self) -> None:
        """Clean up component resources asynchronously.

        Cleanup errors are logged, not raised, so they never mask the error
        that triggered shutdown.
        """
        async with self._cleanup_lock:
            if not self._initialized:
                return

            self._logger.info("Cleaning up component", component=self.component_name)

            try:
                await self._async_cleanup()
            except Exception as e:
                self._logger.error(
                    "Component cleanup failed",
                    component=self.component_name,
                    error=str(e),
                )
            finally:
                self._initialized = False

            self._logger.info("Component cleaned up", component=self.component_name)

    @abstractmethod
    async def _async_initialize(self) -> None:
        """Perform component-specific initialization work."""
        pass

    async def _async_cleanup(self) -> None:
        """Perform component-specific cleanup work."""
        pass

    async def __aenter__(self) -> "AsyncComponent[T]":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()


class ComponentRegistry:
    """Registry coordinating the lifecycle of a set of components.

    Each engine owns its own registry; there is no process-wide instance.
    Components are initialized in dependency order and cleaned up in reverse.
    """

    def __init__(self) -> None:
        self._components: Dict[str, Any] = {}
        self._dependencies: Dict[str, List[str]] = {}
        self._logger = structlog.get_logger(self.__class__.__name__)

    def register(
        self,
        name: str,
        component: Any,
        dependencies: Optional[List[str]] = None,
    ) -> None:
        """Register component with registry.

        Args:
            name: Unique name for the component
            component: Component instance to register
            dependencies: Names of components this one depends on

        Raises:
            ValidationError: If component name already exists
        """
        if name in self._components:
            raise ValidationError(
                f"Component already registered: {name}",
                code="COMPONENT_EXISTS",
                context={"component_name": name},
            )

        self._components[name] = component
        self._dependencies[name] = dependencies or []

        self._logger.debug(
            "Component registered",
            component_name=name,
            component_type=type(component).__name__,
            dependencies=dependencies,
        )

    def get(self, name: str) -> Any:
        """Get component by name.

        Raises:
            ValidationError: If component not found
        """
        if name not in self._components:
            raise ValidationError(
                f"Component not found: {name}",
                code="COMPONENT_NOT_FOUND",
                context={"component_name": name},
            )
        return self._components[name]

    def get_all(self) -> Dict[str, Any]:
        return self._components.copy()

    def get_initialization_order(self) -> List[str]:
        """Get component initialization order based on dependencies.

        Returns:
            List of component names in initialization order

        Raises:
            ValidationError: If circular or unknown dependencies are detected
        """
        visited = set()
        temp_visited = set()
        order: List[str] = []

        def visit(name: str) -> None:
            if name in temp_visited:
                raise ValidationError(
                    "Circular dependency detected",
                    code="CIRCULAR_DEPENDENCY",
                    context={"component_name": name},
                )
            if name in visited:
                return
            if name not in self._components:
                raise ValidationError(
                    f"Unknown dependency: {name}",
                    code="COMPONENT_NOT_FOUND",
                    context={"component_name": name},
                )

            temp_visited.add(name)
            for dependency in self._dependencies.get(name, []):
                visit(dependency)
            temp_visited.remove(name)
            visited.add(name)
            order.append(name)

        for component_name in self._components:
            visit(component_name)

        return order

    async def initialize_all(self) -> None:
        """Initialize all components in dependency order.

        If one component fails, the ones already initialized are cleaned up
        before the error propagates.
        """
        initialized: List[str] = []
        try:
            for name in self.get_initialization_order():
                component = self._components[name]
                if isinstance(component, AsyncInitializable):
                    await component.initialize()
                initialized.append(name)
        except BaseException:
            for name in reversed(initialized):
                await self._cleanup_one(name)
            raise

    async def cleanup_all(self) -> None:
        """Clean up all components in reverse dependency order."""
        for name in reversed(self.get_initialization_order()):
            await self._cleanup_one(name)

    async def _cleanup_one(self, name: str) -> None:
        component = self._components[name]
        if not isinstance(component, AsyncInitializable):
            return
        try:
            await component.cleanup()
        except Exception as e:
            self._logger.error("Component cleanup failed", component_name=name, error=str(e))

    def get_health_status(self) -> Dict[str, Any]:
        """Get health status of all registered components."""
        status = {}
        for name, component in self._components.items():
            if isinstance(component, Monitorable):
                status[name] = component.get_health_status()
            else:
                status[name] = {
                    "component": name,
                    "type": type(component).__name__,
                    "status": "unknown",
                }
        return status

"""Sluice - database middleware query engine.

Sluice sits between callers and a relational backing store. It compiles
raw SQL, structured CRUD commands and search requests into parameterized
statement plans, runs them over a bounded connection pool with a
single-flight result cache, and answers every operation with a uniform
``{type, data, error, metadata}`` envelope.

Modules:
    core: Base components, exceptions, protocols and utilities
    config: Configuration models
    logging: Structured logging framework
    database: Backing stores and the connection pool
    cache: Query result cache
    catalog: Schema metadata catalog
    compiler: Structured commands and statement plans
    search: Search planners
    advisor: Index recommendations and management
    executor: Plan execution and streaming

Example:
    >>> from sluice import EngineConfig, QueryEngine
    >>>
    >>> config = EngineConfig.from_file("sluice.yaml")
    >>> async with QueryEngine(config) as engine:
    ...     response = await engine.execute_filtered(
    ...         "people", filters={"age": {"operator": ">", "value": 30}}, page=1, page_size=20
    ...     )
    ...     rows = response.data
"""

from . import advisor, cache, catalog, compiler, config, core, database, executor, logging, search
from .config.models import EngineConfig
from .engine import QueryEngine
from .executor import Response

__version__ = "0.1.0"
__title__ = "Sluice"
__description__ = "Database middleware query engine"
__license__ = "MIT"

__all__ = [
    "EngineConfig",
    "QueryEngine",
    "Response",
    "advisor",
    "cache",
    "catalog",
    "compiler",
    "config",
    "core",
    "database",
    "executor",
    "logging",
    "search",
    "__version__",
    "__title__",
    "__description__",
    "__license__",
]

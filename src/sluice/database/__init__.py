"""Sluice database layer.

This package provides the backing store abstraction, the built-in SQLite
backing store, the registry that selects a store from configuration, and the
connection pool that leases sessions to executions.

Key Features:
- Backing store interface covering sessions, statements, cursors and inspection
- Fair connection pooling with health checks and drain on shutdown
- Platform selection by configuration through a registry

Supported Platforms:
- SQLite (aiosqlite)
"""

from .base import BaseBackingStore
from .connectors import SQLiteBackingStore
from .factory import create_backing_store, get_default_registry
from .models import ColumnInfo, IndexInfo, QueryResult, TableInfo
from .pool import ConnectionPool, PooledConnection
from .registry import BackingStoreRegistry

__all__ = [
    # Models
    "QueryResult",
    "TableInfo",
    "ColumnInfo",
    "IndexInfo",

    # Core classes
    "BaseBackingStore",
    "BackingStoreRegistry",
    "ConnectionPool",
    "PooledConnection",
    "create_backing_store",
    "get_default_registry",

    # Backing stores
    "SQLiteBackingStore",
]

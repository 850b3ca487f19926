"""Pytest configuration and shared fixtures.

This module provides pytest configuration and shared fixtures for all tests
in the Sluice test suite: structlog capture, a seeded SQLite database and
the engine components built on top of it.
"""

import sqlite3
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Dict, Generator, List
from unittest.mock import MagicMock

import pytest
import structlog

from sluice.advisor import WorkloadTracker
from sluice.cache import QueryCache
from sluice.catalog import SchemaCatalog
from sluice.compiler import CommandCompiler
from sluice.config.models import (
    BackendConfig,
    CacheConfig,
    CatalogConfig,
    EngineConfig,
    PoolConfig,
    SearchConfig,
)
from sluice.database import ConnectionPool, SQLiteBackingStore
from sluice.engine import QueryEngine
from sluice.executor import QueryExecutor
from sluice.search import SearchEngine

# Configure test logging to suppress noise during tests
structlog.configure(
    processors=[structlog.testing.LogCapture()],
    cache_logger_on_first_use=False,
)

CITIES = ["Oslo", "Lima", "Pune", "Kyiv", "Doha"]


def _person(i: int) -> Dict[str, object]:
    return {
        "id": i,
        "name": f"Person {i:02d}",
        "age": 20 + (i * 7) % 23,
        "gender": "F" if i % 2 else "M",
        "email": f"person{i}@example.com",
        "city": CITIES[i % len(CITIES)],
    }


PEOPLE: List[Dict[str, object]] = [_person(i) for i in range(1, 24)] + [
    {"id": 24, "name": "Ann_Marie", "age": 41, "gender": "F", "email": "ann@example.com", "city": "Oslo"},
    {"id": 25, "name": "100% Bob", "age": 29, "gender": "M", "email": "bob@example.com", "city": "Lima"},
]

ORDERS = [
    {"id": i, "person_id": (i % 7) + 1, "amount": round(10.5 * i, 2), "status": "open" if i % 3 else "closed"}
    for i in range(1, 13)
]

SCHEMA = """
CREATE TABLE people (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    age INTEGER,
    gender TEXT,
    email TEXT UNIQUE,
    city TEXT
);
CREATE INDEX idx_people_city ON people (city);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    person_id INTEGER NOT NULL,
    amount REAL NOT NULL,
    status TEXT NOT NULL
);
"""


def seed_database(path: Path) -> Path:
    """Create and fill the test schema."""
    connection = sqlite3.connect(path)
    try:
        connection.executescript(SCHEMA)
        connection.executemany(
            "INSERT INTO people (id, name, age, gender, email, city) "
            "VALUES (:id, :name, :age, :gender, :email, :city)",
            PEOPLE,
        )
        connection.executemany(
            "INSERT INTO orders (id, person_id, amount, status) VALUES (:id, :person_id, :amount, :status)",
            ORDERS,
        )
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def people() -> List[Dict[str, object]]:
    """Rows seeded into the ``people`` table."""
    return [dict(row) for row in PEOPLE]


@pytest.fixture
def database_path(temp_dir: Path) -> Path:
    return seed_database(temp_dir / "sluice.db")


@pytest.fixture
def backend_config(database_path: Path) -> BackendConfig:
    return BackendConfig(id="test", database=str(database_path), statement_timeout=5.0)


@pytest.fixture
def engine_config(backend_config: BackendConfig) -> EngineConfig:
    return EngineConfig(
        name="test",
        backend=backend_config,
        pool=PoolConfig(min_size=1, max_size=4, acquire_timeout=2.0),
        cache=CacheConfig(capacity=64, default_ttl=60.0),
        catalog=CatalogConfig(),
        search=SearchConfig(default_page_size=10, max_page_size=100),
    )


@pytest.fixture
async def backend(backend_config: BackendConfig) -> AsyncGenerator[SQLiteBackingStore, None]:
    store = SQLiteBackingStore(backend_config)
    await store.initialize()
    yield store
    await store.cleanup()


@pytest.fixture
async def pool(engine_config: EngineConfig, backend: SQLiteBackingStore) -> AsyncGenerator[ConnectionPool, None]:
    connection_pool = ConnectionPool(engine_config.pool, backend)
    await connection_pool.initialize()
    yield connection_pool
    await connection_pool.cleanup()


@pytest.fixture
async def catalog(
    engine_config: EngineConfig,
    pool: ConnectionPool,
    backend: SQLiteBackingStore,
) -> AsyncGenerator[SchemaCatalog, None]:
    schema_catalog = SchemaCatalog(engine_config.catalog, pool, backend)
    await schema_catalog.initialize()
    yield schema_catalog
    await schema_catalog.cleanup()


@pytest.fixture
def cache(engine_config: EngineConfig) -> QueryCache:
    return QueryCache(engine_config.cache)


@pytest.fixture
def tracker() -> WorkloadTracker:
    return WorkloadTracker(capacity=32)


@pytest.fixture
def compiler(catalog: SchemaCatalog, engine_config: EngineConfig, tracker: WorkloadTracker) -> CommandCompiler:
    return CommandCompiler(catalog, engine_config.search, observer=tracker)


@pytest.fixture
def executor(
    pool: ConnectionPool,
    backend: SQLiteBackingStore,
    cache: QueryCache,
    catalog: SchemaCatalog,
) -> QueryExecutor:
    return QueryExecutor(pool, backend, cache, catalog)


@pytest.fixture
def search(
    compiler: CommandCompiler,
    catalog: SchemaCatalog,
    executor: QueryExecutor,
    engine_config: EngineConfig,
) -> SearchEngine:
    return SearchEngine(compiler, catalog, executor, engine_config.search)


@pytest.fixture
async def engine(engine_config: EngineConfig) -> AsyncGenerator[QueryEngine, None]:
    async with QueryEngine(engine_config) as query_engine:
        yield query_engine


@pytest.fixture
def mock_logger():
    """Mock structured logger for testing."""
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger


# Auto-mark tests based on their location
def pytest_collection_modifyitems(config, items):
    """Mark tests ``unit`` plus their area directory, e.g. ``cache``."""
    tests_root = Path(config.rootdir) / "tests"
    for item in items:
        try:
            test_path = Path(item.fspath).relative_to(tests_root)
        except ValueError:
            continue

        if test_path.parts[0] == "unit":
            item.add_marker(pytest.mark.unit)
            if len(test_path.parts) > 2:
                item.add_marker(getattr(pytest.mark, test_path.parts[1]))

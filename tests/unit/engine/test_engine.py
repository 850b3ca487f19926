"""Tests for the query engine facade."""

import asyncio

import pytest

from sluice.config.models import EngineConfig
from sluice.core.exceptions import ConfigurationError, ErrorCodes, InvalidCommandError
from sluice.database import BackingStoreRegistry
from sluice.engine import QueryEngine
from sluice.executor import BatchStream

ENVELOPE_KEYS = {"type", "data", "error", "metadata"}


def _ids(response):
    return [row["id"] for row in response.data]


class TestLifecycle:
    """Test cases for engine construction and lifecycle."""

    async def test_context_manager(self, engine_config):
        async with QueryEngine(engine_config) as engine:
            assert engine.is_initialized
            assert engine.pool.get_stats()["total"] >= 1

        assert not engine.is_initialized
        assert engine.pool.is_closed

    async def test_explicit_lifecycle(self, engine_config):
        engine = QueryEngine(engine_config)
        await engine.initialize()
        try:
            assert (await engine.execute_raw("SELECT 1 AS one")).data == [{"one": 1}]
        finally:
            await engine.cleanup()

    def test_unregistered_platform(self, engine_config):
        with pytest.raises(ConfigurationError) as exc_info:
            QueryEngine(engine_config, registry=BackingStoreRegistry())

        assert exc_info.value.code == ErrorCodes.CONFIG_NOT_FOUND

    async def test_from_dict_config(self, database_path):
        config = EngineConfig.from_dict({"backend": {"id": "main", "database": str(database_path)}})

        async with QueryEngine(config) as engine:
            response = await engine.search_by_id("people", 1)

        assert response.data[0]["name"] == "Person 01"

    async def test_health_status(self, engine):
        status = engine.get_health_status()

        assert set(status["components"]) == {"backend", "pool", "cache", "catalog"}


class TestEnvelope:
    """Test cases for the response envelope of every operation."""

    async def test_success_envelope(self, engine):
        response = await engine.execute_raw("SELECT id FROM people WHERE id = ?", [5])

        body = response.to_dict()
        assert set(body) == ENVELOPE_KEYS
        assert body["type"] == "execute_raw"
        assert body["data"] == [{"id": 5}]
        assert body["error"] is None
        assert body["metadata"]["correlation_id"]
        assert body["metadata"]["cache"] == "miss"

    async def test_validation_failure(self, engine):
        response = await engine.search_column("people", "salary", 10)

        assert set(response.to_dict()) == ENVELOPE_KEYS
        assert response.data is None
        assert response.error.startswith("UNKNOWN_COLUMN:")
        assert response.metadata["error_code"] == ErrorCodes.UNKNOWN_COLUMN
        assert response.metadata["correlation_id"]

    async def test_statement_failure_surfaces_backend_message(self, engine):
        response = await engine.execute_raw("SELECT * FROM nowhere")

        assert response.error == "no such table: nowhere"
        assert response.metadata["error_code"] == ErrorCodes.STATEMENT_FAILED

    async def test_unexpected_error_is_sanitized(self, engine, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("secret connection string")

        monkeypatch.setattr(engine.executor, "execute", explode)

        response = await engine.execute_raw("SELECT 1")

        assert response.error == "Internal error"
        assert "secret" not in str(response.to_dict())
        assert response.metadata["error_code"] == ErrorCodes.INTERNAL_ERROR

    async def test_correlation_ids_differ(self, engine):
        first = await engine.execute_raw("SELECT 1")
        second = await engine.execute_raw("SELECT 1")

        assert first.metadata["correlation_id"] != second.metadata["correlation_id"]


class TestStatements:
    """Test cases for raw, paginated, filtered and structured execution."""

    async def test_mutation_data(self, engine):
        response = await engine.execute_raw(
            "INSERT INTO orders (person_id, amount, status) VALUES (?, ?, ?)", [2, 9.5, "open"]
        )

        assert response.data == {"rows_affected": 1, "last_row_id": 13}
        assert response.metadata["rows_affected"] == 1

    async def test_ddl_on_mixed_case_table_refreshes_metadata(self, engine):
        assert (await engine.execute_raw("CREATE TABLE Staff (id INTEGER PRIMARY KEY, name TEXT)")).ok
        assert (await engine.execute_filtered("Staff", filters={"name": "a"})).ok

        assert (await engine.execute_raw("ALTER TABLE Staff ADD COLUMN dept TEXT")).ok
        response = await engine.execute_filtered("Staff", filters={"dept": "x"})

        assert response.ok, response.error
        assert response.data == []

    async def test_repeated_numbered_placeholder(self, engine):
        response = await engine.execute_raw("SELECT ?1 AS a, ?1 AS b", [7])

        assert response.data == [{"a": 7, "b": 7}]

    async def test_execute_paginated(self, engine):
        response = await engine.execute_paginated("SELECT * FROM orders ORDER BY id", 3, 5)

        assert _ids(response) == [11, 12]
        assert response.metadata["pagination"]["total_pages"] == 3
        assert not response.metadata["pagination"]["has_next"]

    async def test_paginated_statement_with_own_limit(self, engine):
        response = await engine.execute_paginated("SELECT * FROM people LIMIT 5", 1, 10)

        assert response.metadata["error_code"] == ErrorCodes.CONFLICTING_PAGINATION

    async def test_execute_filtered(self, engine, people):
        response = await engine.execute_filtered(
            "people",
            columns=["id", "city"],
            filters={"city": {"operator": "IN", "value": ["Oslo", "Lima"]}},
            order_by=["city DESC"],
            page_size=20,
        )

        expected = sorted(
            (row for row in people if row["city"] in ("Oslo", "Lima")), key=lambda row: (row["city"], -row["id"])
        )
        assert [row["city"] for row in response.data] == [row["city"] for row in reversed(expected)]
        assert response.metadata["pagination"]["total_rows"] == len(expected)

    async def test_invalid_page(self, engine):
        response = await engine.execute_filtered("people", page=0)

        assert response.metadata["error_code"] == ErrorCodes.INVALID_PAGINATION

    async def test_page_size_over_maximum(self, engine):
        response = await engine.execute_filtered("people", page_size=500)

        assert response.metadata["error_code"] == ErrorCodes.INVALID_PAGINATION

    async def test_structured_commands(self, engine):
        insert = await engine.execute_structured_command(
            {"operation": "insert", "table": "orders", "values": {"person_id": 3, "amount": 1.0, "status": "open"}}
        )
        update = await engine.execute_structured_command(
            {"operation": "update", "table": "orders", "values": {"status": "closed"}, "conditions": {"id": 13}}
        )
        select = await engine.execute_structured_command(
            {"operation": "select", "table": "orders", "conditions": {"id": 13}}
        )
        delete = await engine.execute_structured_command(
            {"operation": "delete", "table": "orders", "conditions": {"id": 13}}
        )

        assert insert.data["last_row_id"] == 13
        assert update.data["rows_affected"] == 1
        assert select.data == [{"id": 13, "person_id": 3, "amount": 1.0, "status": "closed"}]
        assert delete.data["rows_affected"] == 1

    async def test_malformed_command(self, engine):
        response = await engine.execute_structured_command({"operation": "merge", "table": "orders"})

        assert response.metadata["error_code"] == ErrorCodes.INVALID_COMMAND


class TestProperties:
    """End to end guarantees of the engine."""

    async def test_literals_never_reach_statement_text(self, engine):
        hostile = "Robert'); DROP TABLE people;--"
        command = {
            "operation": "select",
            "table": "people",
            "conditions": {"name": hostile, "age": {"operator": ">", "value": 31337}},
            "order_by": "age DESC",
            "limit": 7,
        }

        plan = await engine.compiler.compile_command(command)
        response = await engine.execute_structured_command(command)

        assert hostile not in plan.sql
        assert "31337" not in plan.sql
        assert "7" not in plan.sql
        assert hostile in plan.params
        assert response.ok
        assert response.data == []
        assert (await engine.execute_raw("SELECT COUNT(*) AS n FROM people")).data == [{"n": 25}]

    async def test_pages_partition_result(self, engine, people):
        first = await engine.execute_filtered("people", filters={"gender": "F"}, page=1, page_size=4)
        total_pages = first.metadata["pagination"]["total_pages"]

        seen = []
        for page in range(1, total_pages + 1):
            response = await engine.execute_filtered("people", filters={"gender": "F"}, page=page, page_size=4)
            seen.extend(_ids(response))

        assert total_pages == 4
        assert sorted(seen) == [row["id"] for row in people if row["gender"] == "F"]
        assert len(seen) == len(set(seen))

    async def test_map_order_does_not_change_cache_key(self, engine):
        first = await engine.execute_filtered("people", filters={"gender": "F", "city": "Oslo"})
        second = await engine.execute_filtered("people", filters={"city": "Oslo", "gender": "F"})

        assert first.metadata["cache"] == "miss"
        assert second.metadata["cache"] == "hit"
        assert second.data == first.data

    async def test_concurrent_identical_requests_compute_once(self, engine):
        responses = await asyncio.gather(
            *(engine.search_multi("people", {"city": "Pune", "gender": "M"}) for _ in range(6))
        )

        assert all(response.data == responses[0].data for response in responses)
        stats = engine.cache.get_stats()
        assert stats["misses"] == 1
        assert stats["joins"] + stats["hits"] == 5

    async def test_search_column_equals_filtered(self, engine):
        searched = await engine.search_column("people", "age", 30, operator=">")
        filtered = await engine.execute_filtered("people", filters={"age": {"operator": ">", "value": 30}})

        assert searched.data == filtered.data
        assert searched.metadata["pagination"] == filtered.metadata["pagination"]

    async def test_unscoped_update_rejected(self, engine):
        response = await engine.execute_structured_command(
            {"operation": "update", "table": "people", "values": {"city": "Atlantis"}}
        )

        assert response.metadata["error_code"] == ErrorCodes.UNSCOPED_MUTATION
        count = await engine.execute_raw("SELECT COUNT(*) AS n FROM people WHERE city = ?", ["Atlantis"])
        assert count.data == [{"n": 0}]

    async def test_created_composite_leaves_recommendations(self, engine):
        for _ in range(3):
            await engine.search_multi("people", {"age": 30, "gender": "F"}, overrides={"age": {"operator": ">="}})

        before = await engine.index_recommend("people")
        assert ["age", "gender"] in [rec["columns"] for rec in before.data]

        created = await engine.index_create("people", ["age", "gender"])
        after = await engine.index_recommend("people")

        assert created.data["name"] == "idx_people_age_gender"
        assert ["age", "gender"] not in [rec["columns"] for rec in after.data]


class TestSearchOperations:
    async def test_search_by_id(self, engine):
        response = await engine.search_by_id("people", 25)

        assert response.type == "search_by_id"
        assert response.data[0]["name"] == "100% Bob"
        assert response.metadata["plan"]["path"] == "primary_key"

    async def test_unknown_search_option_is_rejected(self, engine):
        response = await engine.search_column("people", "name", "ann", fuzzy=True)

        assert not response.ok
        assert response.metadata["error_code"] == ErrorCodes.INVALID_COMMAND
        assert "fuzzy" in response.error

    async def test_search_ordered_reports_degraded(self, engine):
        degraded = await engine.search_ordered("people", "age", lower=40)
        indexed = await engine.search_ordered("people", "city", upper="Doha")

        assert degraded.metadata["degraded"] is True
        assert indexed.metadata["degraded"] is False
        assert [row["city"] for row in indexed.data] == ["Doha"] * 4


class TestIndexOperations:
    async def test_list_and_drop(self, engine):
        created = await engine.index_create("orders", ["status"])
        listed = await engine.index_list("orders")
        dropped = await engine.index_drop("idx_orders_status")
        again = await engine.index_drop("idx_orders_status")

        assert created.ok
        assert listed.metadata["count"] == 1
        assert listed.data[0]["columns"] == ["status"]
        assert dropped.data["name"] == "idx_orders_status"
        assert again.metadata["error_code"] == ErrorCodes.INVALID_INDEX

    async def test_unknown_table(self, engine):
        response = await engine.index_list("ghosts")

        assert response.metadata["error_code"] == ErrorCodes.UNKNOWN_TABLE


class TestCacheAndHealth:
    async def test_cache_clear_pattern(self, engine):
        await engine.execute_raw("SELECT * FROM people")
        await engine.execute_raw("SELECT * FROM orders")

        cleared = await engine.cache_clear("query:orders:*")
        assert cleared.data == {"cleared": 1}

        assert (await engine.execute_raw("SELECT * FROM people")).metadata["cache"] == "hit"
        assert (await engine.execute_raw("SELECT * FROM orders")).metadata["cache"] == "miss"

    async def test_cache_clear_all(self, engine):
        await engine.execute_raw("SELECT * FROM people")
        await engine.execute_raw("SELECT * FROM orders")

        assert (await engine.cache_clear()).data == {"cleared": 2}

    async def test_health(self, engine):
        await engine.execute_raw("SELECT 1")
        await engine.execute_raw("SELECT 1")

        response = await engine.health()

        assert set(response.data["pool"]) == {"active", "idle", "total", "errors"}
        assert response.data["pool"]["active"] == 0
        assert response.data["cache"] == {"entries": 1, "hitRate": 0.5}
        assert "total_calls" in response.data["performance"]
        assert response.metadata["initialized"] is True


class TestStreaming:
    async def test_stream(self, engine):
        stream = engine.stream("SELECT id FROM orders ORDER BY id", batch_size=5)

        assert isinstance(stream, BatchStream)
        assert [len(batch) async for batch in stream] == [5, 5, 2]

    async def test_default_batch_size(self, engine, engine_config):
        stream = engine.stream("SELECT id FROM orders")

        assert stream.batch_size == engine_config.search.stream_batch_size

    async def test_stream_rejects_writes(self, engine):
        with pytest.raises(InvalidCommandError):
            engine.stream("DELETE FROM orders")

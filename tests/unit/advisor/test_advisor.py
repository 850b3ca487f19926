"""Tests for the index advisor."""

import math

import pytest

from sluice.advisor import IndexAdvisor, default_index_name
from sluice.config.models import AdvisorConfig
from sluice.core.exceptions import (
    ErrorCodes,
    IndexDefinitionError,
    UnknownColumnError,
    UnknownTableError,
)


@pytest.fixture
def advisor(catalog, executor, backend, tracker):
    return IndexAdvisor(catalog, executor, backend, tracker)


def _benefit(frequency, distinct, rows=25):
    return frequency * (0.25 + 0.75 * distinct / rows) * math.log10(rows + 10)


def _record(tracker, times, **columns):
    for _ in range(times):
        tracker.record("people", **columns)


class TestRecommend:
    """Test cases for index recommendations."""

    async def test_ranks_by_benefit(self, advisor, tracker):
        _record(tracker, 3, filter_columns=["age"])
        _record(tracker, 1, filter_columns=["gender"])

        recommendations = await advisor.recommend("people")

        assert [rec.columns for rec in recommendations] == [("age",), ("gender",)]
        age, gender = recommendations
        assert age.benefit == pytest.approx(_benefit(3, 23), abs=1e-3)
        assert gender.benefit == pytest.approx(_benefit(1, 2), abs=1e-3)
        assert age.ddl == 'CREATE INDEX "idx_people_age" ON "people" ("age")'
        assert age.rationale == "age filtered 3x, ordered 0x; selectivity 0.92 over 25 rows"
        assert not age.is_composite

    async def test_ordering_counts_half(self, advisor, tracker):
        _record(tracker, 2, order_columns=["name"])

        (recommendation,) = await advisor.recommend("people")

        assert recommendation.benefit == pytest.approx(_benefit(1, 25), abs=1e-3)

    async def test_existing_indexes_excluded(self, advisor, tracker):
        _record(tracker, 5, filter_columns=["city"])
        _record(tracker, 5, filter_columns=["id"])
        _record(tracker, 5, filter_columns=["email"])

        assert await advisor.recommend("people") == []

    async def test_composite_orders_by_cardinality(self, advisor, tracker):
        _record(tracker, 2, filter_columns=["gender", "age"], order_columns=["age"])

        recommendations = await advisor.recommend("people")
        composite = next(rec for rec in recommendations if rec.is_composite)

        assert composite.columns == ("age", "gender")
        assert composite.benefit == pytest.approx(_benefit(2 + 0.5 * 2, 23), abs=1e-3)
        assert composite.rationale.startswith("age, gender filtered together 2x")
        assert not composite.redundant

    async def test_redundant_composite(self, advisor, tracker):
        _record(tracker, 4, filter_columns=["city", "gender"])

        default = await advisor.recommend("people")
        everything = await advisor.recommend("people", include_redundant=True)

        assert [rec.columns for rec in default] == [("gender",)]
        redundant = next(rec for rec in everything if rec.is_composite)
        assert redundant.columns == ("city", "gender")
        assert redundant.redundant

    async def test_limit(self, advisor, tracker):
        _record(tracker, 3, filter_columns=["age"])
        _record(tracker, 2, filter_columns=["name"])
        _record(tracker, 1, filter_columns=["gender"])

        assert len(await advisor.recommend("people", limit=2)) == 2
        assert await advisor.recommend("people", limit=0) == []

    async def test_min_benefit(self, catalog, executor, backend, tracker):
        advisor = IndexAdvisor(catalog, executor, backend, tracker, AdvisorConfig(min_benefit=1.0))
        _record(tracker, 3, filter_columns=["age"])
        _record(tracker, 1, filter_columns=["gender"])

        assert [rec.columns for rec in await advisor.recommend("people")] == [("age",)]

    async def test_unknown_columns_skipped(self, advisor, tracker):
        _record(tracker, 3, filter_columns=["salary"])

        assert await advisor.recommend("people") == []

    async def test_no_workload(self, advisor):
        assert await advisor.recommend("orders") == []

    async def test_unknown_table(self, advisor):
        with pytest.raises(UnknownTableError):
            await advisor.recommend("ghosts")

    async def test_compiled_selects_feed_recommendations(self, advisor, search):
        await search.plan_column("people", "age", 30, operator=">")

        recommendations = await advisor.recommend("people")

        assert recommendations[0].columns == ("age",)

    async def test_to_dict(self, advisor, tracker):
        _record(tracker, 1, filter_columns=["age"])

        (recommendation,) = await advisor.recommend("people")

        assert recommendation.to_dict()["columns"] == ["age"]
        assert recommendation.to_dict()["table"] == "people"


class TestIndexManagement:
    """Test cases for creating and dropping indexes."""

    async def test_create_index(self, advisor, catalog, tracker):
        _record(tracker, 3, filter_columns=["age"])

        index = await advisor.create_index("people", ["age"])

        assert index.name == "idx_people_age"
        assert index.columns == ["age"]
        assert index.origin == "created"
        assert (await catalog.leading_index("people", "age")).name == "idx_people_age"
        assert await advisor.recommend("people") == []

    async def test_create_unique_named_index(self, advisor):
        index = await advisor.create_index("people", ["name", "city"], "people_name_city", unique=True)

        assert index.is_unique
        assert index.columns == ["name", "city"]
        assert "people_name_city" in [index.name for index in await advisor.list_indexes("people")]

    async def test_create_invalidates_cached_results(self, advisor, search):
        await search.search_column("people", "age", 41)

        await advisor.create_index("people", ["age"])
        result = await search.search_column("people", "age", 41)

        assert result.cache == "miss"

    @pytest.mark.parametrize(
        "columns, name",
        [([], None), (["age", "age"], None), (["age"], "bad name"), (["age"], "idx_people_city")],
    )
    async def test_invalid_definitions(self, advisor, columns, name):
        with pytest.raises(IndexDefinitionError) as exc_info:
            await advisor.create_index("people", columns, name)

        assert exc_info.value.code == ErrorCodes.INVALID_INDEX

    async def test_create_unknown_column(self, advisor):
        with pytest.raises(UnknownColumnError):
            await advisor.create_index("people", ["salary"])

    async def test_drop_index(self, advisor, catalog):
        await advisor.create_index("people", ["age"])

        dropped = await advisor.drop_index("IDX_PEOPLE_AGE")

        assert dropped.name == "idx_people_age"
        assert await catalog.leading_index("people", "age") is None

    async def test_drop_unknown_index(self, advisor):
        with pytest.raises(IndexDefinitionError):
            await advisor.drop_index("idx_nothing")

    async def test_drop_constraint_index_refused(self, advisor):
        with pytest.raises(IndexDefinitionError) as exc_info:
            await advisor.drop_index("sqlite_autoindex_people_1", "people")

        assert exc_info.value.context["origin"] == "unique"

    async def test_list_indexes(self, advisor):
        origins = {index.name: index.origin for index in await advisor.list_indexes("people")}

        assert origins["idx_people_city"] == "created"
        assert origins["sqlite_autoindex_people_1"] == "unique"


def test_default_index_name():
    assert default_index_name("People", ["Age", "city"]) == "idx_people_age_city"

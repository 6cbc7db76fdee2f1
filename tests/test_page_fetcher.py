"""Tests for the paginated initial load."""

import pytest

from tablemirror.backend import MockBackend, Prefilter, ScopedQuery
from tablemirror.rows import Condition, ConditionSet
from tablemirror.sync import PageFetcher


def make_backend(n: int) -> MockBackend:
    backend = MockBackend()
    backend.seed("items", [{"id": i, "group": i % 2} for i in range(n)])
    return backend


def make_query(**kwargs) -> ScopedQuery:
    return ScopedQuery(table="items", schema="public", **kwargs)


class Collector:
    def __init__(self):
        self.rows = []

    def __call__(self, row):
        self.rows.append(row)


class TestPageFetcher:
    """Tests for PageFetcher.load()."""

    @pytest.mark.asyncio
    async def test_windows_cover_count(self):
        """Test 2500 rows with page size 1000 use three inclusive windows."""
        backend = make_backend(2500)
        collect = Collector()

        loaded = await PageFetcher(backend, 1000).load(make_query(), collect)

        assert loaded == 2500
        assert backend.windows == [(0, 999), (1000, 1999), (2000, 2499)]
        assert sorted(r["id"] for r in collect.rows) == list(range(2500))

    @pytest.mark.asyncio
    async def test_exact_multiple(self):
        """Test a count that is a multiple of the page size."""
        backend = make_backend(20)

        await PageFetcher(backend, 10).load(make_query(), Collector())

        assert backend.windows == [(0, 9), (10, 19)]

    @pytest.mark.asyncio
    async def test_single_short_page(self):
        """Test fewer rows than a page need one window."""
        backend = make_backend(3)

        await PageFetcher(backend).load(make_query(), Collector())

        assert backend.windows == [(0, 2)]

    @pytest.mark.asyncio
    async def test_zero_count_fetches_nothing(self):
        """Test an empty table skips fetching."""
        backend = make_backend(0)

        loaded = await PageFetcher(backend).load(make_query(), Collector())

        assert loaded == 0
        assert backend.windows == []

    @pytest.mark.asyncio
    async def test_count_failure_loads_nothing(self):
        """Test a failed count ends the load without raising."""
        backend = make_backend(5)
        backend.fail_count = True
        collect = Collector()

        loaded = await PageFetcher(backend).load(make_query(), collect)

        assert loaded == 0
        assert collect.rows == []
        assert backend.windows == []

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_partial_rows(self):
        """Test rows from earlier pages survive a later failure."""
        backend = make_backend(25)
        backend.fail_fetch_at = 10
        collect = Collector()

        loaded = await PageFetcher(backend, 10).load(make_query(), collect)

        assert loaded == 10
        assert [r["id"] for r in collect.rows] == list(range(10))
        assert backend.windows == [(0, 9), (10, 19)]

    @pytest.mark.asyncio
    async def test_count_is_scoped(self):
        """Test count and fetch see the conditions and prefilter."""
        backend = make_backend(10)
        query = make_query(
            conditions=ConditionSet((Condition("id", "lt", 8),)),
            prefilter=Prefilter("group", 0),
        )
        collect = Collector()

        loaded = await PageFetcher(backend, 2).load(query, collect)

        assert backend.count_queries == [query]
        assert loaded == 4
        assert [r["id"] for r in collect.rows] == [0, 2, 4, 6]
        assert backend.windows == [(0, 1), (2, 3)]

    def test_page_size_must_be_positive(self):
        """Test a zero page size is rejected."""
        with pytest.raises(ValueError):
            PageFetcher(MockBackend(), 0)

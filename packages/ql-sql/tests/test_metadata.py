"""Tests for catalog metadata collection."""

import pytest

from ql_sql.execution.metadata import (
    COLUMN_STATS_SQL,
    COLUMNS_SQL,
    INDEXES_SQL,
    TABLE_STATS_SQL,
    MetadataCollector,
    distinct_estimate,
    split_table_name,
)

from conftest import FakeConnection


def orders_catalog(name: str = "orders") -> dict:
    return {
        (COLUMNS_SQL, name): [
            {"column_name": "id", "data_type": "bigint", "is_nullable": "NO",
             "column_default": "nextval('orders_id_seq'::regclass)"},
            {"column_name": "status", "data_type": "text", "is_nullable": "YES", "column_default": None},
        ],
        (INDEXES_SQL, name): [
            {"index_name": "orders_pkey", "is_unique": True, "columns": ["id"]},
            {"index_name": "orders_lower_status_idx", "is_unique": False, "columns": [None]},
        ],
        (TABLE_STATS_SQL, name): [
            {"reltuples": 50000, "relpages": 410, "total_size": 4_210_688},
        ],
        (COLUMN_STATS_SQL, name): [
            {"attname": "id", "n_distinct": -1.0, "null_frac": 0.0},
            {"attname": "status", "n_distinct": 4.0, "null_frac": 0.02},
        ],
    }


class TestHelpers:

    def test_split_table_name(self):
        assert split_table_name("orders") == (None, "orders")
        assert split_table_name("sales.orders") == ("sales", "orders")

    @pytest.mark.parametrize("n_distinct,rows,expected", [
        (4.0, 50000, 4),
        (-1.0, 50000, 50000),
        (-0.25, 1000, 250),
        (-0.5, None, None),
        (0, 1000, None),
        (None, 1000, None),
    ])
    def test_distinct_estimate(self, n_distinct, rows, expected):
        assert distinct_estimate(n_distinct, rows) == expected


class TestMetadataCollector:

    @pytest.mark.asyncio
    async def test_collects_columns_indexes_and_statistics(self):
        conn = FakeConnection(catalog=orders_catalog())
        result = await MetadataCollector(query_timeout=3.0).collect(conn, ["orders"])

        orders = result["orders"]
        assert [c.name for c in orders.columns] == ["id", "status"]
        assert orders.columns[0].nullable is False
        assert orders.columns[1].nullable is True
        assert orders.columns[0].default.startswith("nextval")

        assert orders.indexes[0].name == "orders_pkey"
        assert orders.indexes[0].unique is True
        assert orders.indexes[0].columns == ["id"]
        assert orders.indexes[1].columns == []

        assert orders.statistics.estimated_rows == 50000
        assert orders.statistics.page_count == 410
        assert orders.statistics.total_size_bytes == 4_210_688
        assert orders.statistics.per_column["id"].distinct_count == 50000
        assert orders.statistics.per_column["status"].distinct_count == 4
        assert orders.statistics.per_column["status"].null_fraction == 0.02

    @pytest.mark.asyncio
    async def test_every_query_carries_timeout(self):
        conn = FakeConnection(catalog=orders_catalog())
        await MetadataCollector(query_timeout=3.0).collect(conn, ["orders"])
        assert conn.fetch_calls
        assert all(timeout == 3.0 for _, _, timeout in conn.fetch_calls)

    @pytest.mark.asyncio
    async def test_schema_passed_to_catalog_queries(self):
        conn = FakeConnection(catalog=orders_catalog())
        await MetadataCollector().collect(conn, ["sales.orders"])
        assert conn.fetch_calls[0][1] == ("sales", "orders")

    @pytest.mark.asyncio
    async def test_unknown_table_skipped(self):
        conn = FakeConnection(catalog=orders_catalog())
        result = await MetadataCollector().collect(conn, ["orders", "missing"])
        assert list(result) == ["orders"]

    @pytest.mark.asyncio
    async def test_failing_table_skipped(self):
        conn = FakeConnection(catalog=orders_catalog(), failing_tables=("secret",))
        result = await MetadataCollector().collect(conn, ["secret", "orders"])
        assert list(result) == ["orders"]

    @pytest.mark.asyncio
    async def test_unquoted_mixed_case_falls_back_to_lower_case(self):
        conn = FakeConnection(catalog=orders_catalog("orders"))
        result = await MetadataCollector().collect(conn, ["Orders"])
        assert result["Orders"].table_name == "Orders"
        assert len(result["Orders"].columns) == 2

    @pytest.mark.asyncio
    async def test_never_analyzed_table(self):
        catalog = orders_catalog()
        catalog[(TABLE_STATS_SQL, "orders")] = [{"reltuples": -1, "relpages": 0, "total_size": 8192}]
        result = await MetadataCollector().collect(FakeConnection(catalog=catalog), ["orders"])
        stats = result["orders"].statistics
        assert stats.estimated_rows is None
        assert stats.per_column["id"].distinct_count is None

    @pytest.mark.asyncio
    async def test_no_connection(self):
        assert await MetadataCollector().collect(None, ["orders"]) == {}

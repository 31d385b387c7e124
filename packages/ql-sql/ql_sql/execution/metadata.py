"""Catalog metadata collection for the tables a query touches.

Reads columns, indexes and planner statistics from ``information_schema``
and ``pg_catalog``. Works against PostgreSQL and Greenplum-style MPP engines
(both expose the same catalog views).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ql_shared.errors import MetadataCollectionFailed

from ..schemas import ColumnInfo, ColumnStatistics, IndexInfo, TableMetadata, TableStatistics

logger = logging.getLogger(__name__)

# $1 = schema (NULL means the connection's current schema), $2 = table name
_SCHEMA = "COALESCE($1::text, current_schema())"

COLUMNS_SQL = f"""
SELECT column_name, data_type, is_nullable, column_default
FROM information_schema.columns
WHERE table_schema = {_SCHEMA} AND table_name = $2
ORDER BY ordinal_position
"""

INDEXES_SQL = f"""
SELECT i.relname AS index_name,
       ix.indisunique AS is_unique,
       array_agg(a.attname ORDER BY k.ord) AS columns
FROM pg_index ix
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
CROSS JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord)
LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
WHERE n.nspname = {_SCHEMA} AND t.relname = $2
GROUP BY i.relname, ix.indisunique
ORDER BY i.relname
"""

TABLE_STATS_SQL = f"""
SELECT c.reltuples::bigint AS reltuples,
       c.relpages::bigint AS relpages,
       pg_total_relation_size(c.oid) AS total_size
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = {_SCHEMA} AND c.relname = $2
"""

COLUMN_STATS_SQL = f"""
SELECT attname, n_distinct, null_frac
FROM pg_stats
WHERE schemaname = {_SCHEMA} AND tablename = $2
"""


def split_table_name(table_name: str) -> Tuple[Optional[str], str]:
    """``"sales.orders"`` -> ``("sales", "orders")``; unqualified -> ``(None, name)``."""
    if "." in table_name:
        schema, name = table_name.rsplit(".", 1)
        return schema, name
    return None, table_name


def distinct_estimate(n_distinct: Optional[float], estimated_rows: Optional[int]) -> Optional[int]:
    """Absolute distinct-count estimate from a ``pg_stats.n_distinct`` value.

    Negative values are a fraction of the row count; zero means unknown.
    """
    if n_distinct is None or n_distinct == 0:
        return None
    if n_distinct > 0:
        return int(n_distinct)
    if estimated_rows is None:
        return None
    return int(round(-n_distinct * estimated_rows))


class MetadataCollector:
    """Builds TableMetadata for each referenced table.

    Never fails the caller: a table whose queries error out is logged and
    left out, and a table the catalog does not know is skipped silently.
    """

    def __init__(self, query_timeout: float = 10.0):
        self.query_timeout = query_timeout

    async def collect(self, conn: Any, tables: Iterable[str]) -> Dict[str, TableMetadata]:
        """Collect metadata keyed by table name as referenced in the query."""
        result: Dict[str, TableMetadata] = {}
        if conn is None:
            return result

        for table_name in tables:
            try:
                metadata = await self._collect_table(conn, table_name)
            except MetadataCollectionFailed as e:
                logger.warning("Skipping metadata for %s: %s", table_name, e)
                continue
            if metadata is None:
                logger.info("Table %s not found in catalog, skipping", table_name)
                continue
            result[table_name] = metadata

        logger.info("Collected metadata for %d table(s)", len(result))
        return result

    async def _collect_table(self, conn: Any, table_name: str) -> Optional[TableMetadata]:
        schema, name = split_table_name(table_name)
        try:
            columns = await self._fetch(conn, COLUMNS_SQL, schema, name)
            # Unquoted identifiers are stored folded to lower case
            if not columns and name != name.lower():
                name = name.lower()
                columns = await self._fetch(conn, COLUMNS_SQL, schema, name)
            if not columns:
                return None

            index_rows = await self._fetch(conn, INDEXES_SQL, schema, name)
            table_rows = await self._fetch(conn, TABLE_STATS_SQL, schema, name)
            column_stat_rows = await self._fetch(conn, COLUMN_STATS_SQL, schema, name)
        except Exception as e:
            raise MetadataCollectionFailed(f"{type(e).__name__}: {e}") from e

        statistics = self._build_statistics(table_rows, column_stat_rows)
        return TableMetadata(
            table_name=table_name,
            columns=[
                ColumnInfo(
                    name=row["column_name"],
                    type=row["data_type"],
                    nullable=str(row["is_nullable"]).upper() == "YES",
                    default=row["column_default"],
                )
                for row in columns
            ],
            indexes=[
                IndexInfo(
                    name=row["index_name"],
                    # Expression index keys have no attribute name
                    columns=[c for c in (row["columns"] or []) if c is not None],
                    unique=bool(row["is_unique"]),
                )
                for row in index_rows
            ],
            statistics=statistics,
        )

    async def _fetch(self, conn: Any, query: str, schema: Optional[str], name: str) -> List[Any]:
        return await conn.fetch(query, schema, name, timeout=self.query_timeout)

    @staticmethod
    def _build_statistics(table_rows: List[Any], column_stat_rows: List[Any]) -> TableStatistics:
        statistics = TableStatistics()
        if table_rows:
            row = table_rows[0]
            reltuples = row["reltuples"]
            # -1 means the table was never analyzed
            statistics.estimated_rows = int(reltuples) if reltuples is not None and reltuples >= 0 else None
            statistics.page_count = int(row["relpages"]) if row["relpages"] is not None else None
            statistics.total_size_bytes = int(row["total_size"]) if row["total_size"] is not None else None

        for row in column_stat_rows:
            statistics.per_column[row["attname"]] = ColumnStatistics(
                distinct_count=distinct_estimate(row["n_distinct"], statistics.estimated_rows),
                null_fraction=float(row["null_frac"]) if row["null_frac"] is not None else None,
            )
        return statistics

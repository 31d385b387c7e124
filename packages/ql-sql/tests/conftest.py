"""Pytest configuration and fixtures for ql-sql tests."""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from ql_shared.config import Settings
from ql_shared.database import init_db, make_session_factory
from ql_sql.notifications import NotificationHub
from ql_sql.store import OptimizationStore


# =============================================================================
# SAMPLE PLANS
# =============================================================================

ORIGINAL_PLAN = """\
Hash Join  (cost=35.50..1570.25 rows=1200 width=64) (actual time=0.410..25.771 rows=1187 loops=1)
  Hash Cond: (o.customer_id = c.id)
  Buffers: shared hit=421
  ->  Seq Scan on orders o  (cost=0.00..1400.00 rows=50000 width=32) (actual time=0.010..12.300 rows=50000 loops=1)
        Filter: (status = 'shipped'::text)
  ->  Hash  (cost=23.00..23.00 rows=1000 width=36) (actual time=0.380..0.381 rows=1000 loops=1)
        ->  Seq Scan on customers c  (cost=0.00..23.00 rows=1000 width=36) (actual time=0.005..0.190 rows=1000 loops=1)
Planning Time: 0.412 ms
Execution Time: 26.104 ms"""

OPTIMIZED_PLAN = """\
Nested Loop  (cost=0.71..420.10 rows=1200 width=64) (actual time=0.030..4.120 rows=1187 loops=1)
  ->  Index Scan using orders_status_idx on orders o  (cost=0.29..180.00 rows=1200 width=32) (actual time=0.020..1.100 rows=1187 loops=1)
        Index Cond: (status = 'shipped'::text)
  ->  Index Scan using customers_pkey on customers c  (cost=0.28..0.20 rows=1 width=36) (actual time=0.002..0.002 rows=1 loops=1)
        Index Cond: (id = o.customer_id)
Planning Time: 0.288 ms
Execution Time: 4.391 ms"""

MPP_PLAN = """\
Gather Motion 3:1  (slice2; segments: 3)  (cost=0.00..862.10 rows=1000 width=16) (actual time=3.101..5.220 rows=1000 loops=1)
  ->  Hash Join  (cost=0.00..861.90 rows=334 width=16) (actual time=2.008..3.550 rows=340 loops=1)
        Hash Cond: (o.customer_id = c.id)
        ->  Redistribute Motion 3:3  (slice1; segments: 3)  (cost=0.00..431.00 rows=334 width=8) (actual time=0.010..0.900 rows=340 loops=1)
              Hash Key: o.customer_id
              ->  Seq Scan on orders o  (cost=0.00..431.00 rows=334 width=8) (actual time=0.005..0.300 rows=340 loops=1)
        ->  Hash  (cost=431.00..431.00 rows=334 width=8) (actual time=1.200..1.200 rows=334 loops=1)
              ->  Seq Scan on customers c  (cost=0.00..431.00 rows=334 width=8) (actual time=0.004..0.500 rows=334 loops=1)
Optimizer: Pivotal Optimizer (GPORCA)
Total runtime: 6.011 ms"""


# =============================================================================
# FAKE TARGET DATABASE
# =============================================================================

class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def start(self):
        self.conn.log.append("BEGIN")

    async def rollback(self):
        self.conn.log.append("ROLLBACK")

    async def commit(self):
        self.conn.log.append("COMMIT")


class FakeConnection:
    """asyncpg-like connection serving canned EXPLAIN output and catalog rows.

    Args:
        plans: SQL fragment -> EXPLAIN text (or an exception to raise); the
            first fragment contained in the EXPLAIN command wins
        catalog: (query constant, table name) -> rows
        failing_tables: table names whose catalog queries raise
    """

    def __init__(
        self,
        plans: Optional[Dict[str, Union[str, Exception]]] = None,
        catalog: Optional[Dict[tuple, List[dict]]] = None,
        failing_tables: tuple = (),
    ):
        self.plans = plans or {}
        self.catalog = catalog or {}
        self.failing_tables = set(failing_tables)
        self.log: List[str] = []
        self.fetch_calls: List[tuple] = []

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)

    async def execute(self, query: str, *args, timeout=None):
        self.log.append(query)
        return "SET"

    async def fetch(self, query: str, *args, timeout=None):
        self.fetch_calls.append((query, args, timeout))
        if query.startswith("EXPLAIN"):
            self.log.append(query)
            for fragment, plan in self.plans.items():
                if fragment in query:
                    if isinstance(plan, Exception):
                        raise plan
                    return [(line,) for line in plan.splitlines()]
            raise RuntimeError("relation does not exist")

        schema, name = args
        if name in self.failing_tables:
            raise RuntimeError(f"permission denied for table {name}")
        return self.catalog.get((query, name), [])

    @property
    def explain_commands(self) -> List[str]:
        return [q for q in self.log if q.startswith("EXPLAIN")]


class FakeConnectionProvider:
    """Lends the same fake connection and counts borrow/return pairs."""

    def __init__(self, conn: FakeConnection, fail: Optional[Exception] = None):
        self.conn = conn
        self.fail = fail
        self.acquired = 0
        self.released = 0

    @asynccontextmanager
    async def acquire(self, target):
        if self.fail is not None:
            raise self.fail
        self.acquired += 1
        try:
            yield self.conn
        finally:
            self.released += 1


class FakeChatModel:
    """Chat model returning canned replies (or raising canned errors) in order."""

    model = "fake-model"

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[list] = []
        self.last_usage: Dict[str, int] = {}

    async def complete(self, messages):
        self.calls.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def prompts(self) -> List[str]:
        return [messages[-1]["content"] for messages in self.calls]


def model_reply(sql: str, rationale: str = "Uses the status index.") -> str:
    return (
        "### Optimized query\n"
        f"```sql\n{sql}\n```\n\n"
        f"### Rationale\n{rationale}\n\n"
        "### Performance impact\nFewer rows read.\n\n"
        "### Potential risks\nNone for this data.\n"
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with zero backoff so retry tests run instantly."""
    return Settings(
        _env_file=None,
        llm_backoff_initial_seconds=0.0,
        llm_timeout_seconds=5.0,
        db_statement_timeout_ms=5_000,
        db_command_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'querylift.db'}")
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> OptimizationStore:
    return OptimizationStore(session_factory)


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()

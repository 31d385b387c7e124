"""EXPLAIN ANALYZE probe for target databases.

Runs the plan-and-analyze command for a statement and reduces the TEXT
output to PlanMetrics. Both PostgreSQL and Greenplum-style MPP engines are
read in TEXT format so a single parser serves both.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Optional

from ql_shared.errors import PlanProbeFailed

from ..schemas import OperatorKind, PlanMetrics

logger = logging.getLogger(__name__)

STANDARD_EXPLAIN = "EXPLAIN (ANALYZE, BUFFERS)"
MPP_EXPLAIN = "EXPLAIN (ANALYZE, VERBOSE, BUFFERS)"

_NUM = r"(\d+(?:\.\d+)?)"
# "Total runtime" is what pre-9.4 based engines (older Greenplum) print
_EXECUTION_TIME_RE = re.compile(rf"(?:Execution Time|Total runtime):\s*{_NUM}\s*ms", re.IGNORECASE)
_PLANNING_TIME_RE = re.compile(rf"Planning Time:\s*{_NUM}\s*ms", re.IGNORECASE)
_ROOT_NODE_RE = re.compile(rf"cost={_NUM}\.\.{_NUM}\s+rows=(\d+)\s+width=(\d+)")

# Modifiers that prefix a node name without changing its kind
_NODE_PREFIXES = ("Parallel ", "Partial ", "Finalize ")

# Longest names first so "Hash Join" wins over "Hash"
_OPERATOR_NAMES = sorted(
    (kind for kind in OperatorKind if kind is not OperatorKind.UNKNOWN),
    key=lambda kind: len(kind.value),
    reverse=True,
)


def build_explain_command(sql: str, is_mpp: bool = False) -> str:
    """Prefix ``sql`` with the plan-and-analyze command for the engine kind."""
    prefix = MPP_EXPLAIN if is_mpp else STANDARD_EXPLAIN
    return f"{prefix} {sql.strip().rstrip(';')}"


def classify_operator(node_text: str) -> OperatorKind:
    """Map the text after a ``->`` marker to an operator kind."""
    text = node_text.strip()
    for prefix in _NODE_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    for kind in _OPERATOR_NAMES:
        name = kind.value
        if text.startswith(name):
            rest = text[len(name):]
            if not rest or not (rest[0].isalnum() or rest[0] == "_"):
                return kind
    return OperatorKind.UNKNOWN


def extract_operators(plan_text: str) -> List[OperatorKind]:
    """Operators in plan order, one per ``->`` line."""
    operators = []
    for line in plan_text.splitlines():
        if "->" in line:
            operators.append(classify_operator(line.split("->", 1)[1]))
    return operators


def parse_plan_text(plan_text: str) -> Optional[PlanMetrics]:
    """Extract metrics from EXPLAIN ANALYZE TEXT output.

    The first ``cost=..`` line is the root node, which carries the total
    cost, row estimate and width of the whole statement.

    Returns:
        PlanMetrics, or None when the root node or the execution time cannot
        be found (not an ANALYZE plan, truncated output, unknown format).
    """
    root = _ROOT_NODE_RE.search(plan_text)
    execution = _EXECUTION_TIME_RE.search(plan_text)
    if root is None or execution is None:
        return None

    planning = _PLANNING_TIME_RE.search(plan_text)

    return PlanMetrics(
        execution_time_ms=float(execution.group(1)),
        planning_time_ms=float(planning.group(1)) if planning else None,
        total_cost=float(root.group(2)),
        row_estimate=int(root.group(3)),
        row_width=int(root.group(4)),
        raw_plan_text=plan_text,
        operators=tuple(extract_operators(plan_text)),
    )


class PlanProbe:
    """Runs EXPLAIN ANALYZE on a borrowed connection.

    The command executes inside a transaction that is always rolled back,
    with ``SET LOCAL statement_timeout``, so probing a data-modifying
    statement leaves no trace and a slow statement cannot hold the
    connection indefinitely.
    """

    def __init__(self, statement_timeout_ms: int = 60_000, timeout: Optional[float] = None):
        """Initialize probe.

        Args:
            statement_timeout_ms: Server-side limit for the analyzed statement
            timeout: Client-side limit for the whole probe in seconds
                (defaults to the statement timeout plus 5 seconds)
        """
        self.statement_timeout_ms = statement_timeout_ms
        self.timeout = timeout if timeout is not None else statement_timeout_ms / 1000.0 + 5.0

    async def probe(self, conn: Any, sql: str, is_mpp: bool = False) -> Optional[PlanMetrics]:
        """Measure ``sql``.

        Returns:
            PlanMetrics, or None when there is no connection, the command
            failed, or its output could not be read.
        """
        if conn is None:
            logger.info("No database connection provided, skipping plan analysis")
            return None

        try:
            plan_text = await asyncio.wait_for(
                self._run_explain(conn, build_explain_command(sql, is_mpp)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Plan analysis timed out after %.1fs", self.timeout)
            return None
        except PlanProbeFailed as e:
            logger.warning("Failed to analyze query plan: %s", e)
            return None

        metrics = parse_plan_text(plan_text)
        if metrics is None:
            logger.warning("Could not extract metrics from plan output (%d chars)", len(plan_text))
        return metrics

    async def _run_explain(self, conn: Any, command: str) -> str:
        transaction = conn.transaction()
        try:
            await transaction.start()
            try:
                await conn.execute(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")
                rows = await conn.fetch(command)
            finally:
                try:
                    await transaction.rollback()
                except Exception as e:
                    logger.debug("Rollback after plan analysis failed: %s", e)
        except Exception as e:
            raise PlanProbeFailed(str(e)) from e

        return "\n".join(str(row[0]) for row in rows)

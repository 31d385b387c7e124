"""QueryLift schemas.

Data structures for the optimization pipeline:
- Request: LlmTarget, OptimizationRequest, DatabaseTarget
- Chats: ChatInfo, ConnectionInfo
- Catalog: ColumnInfo, IndexInfo, ColumnStatistics, TableStatistics, TableMetadata
- Plans: OperatorKind, PlanMetrics
- Results: OptimizationFragment, OptimizationResult
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Placeholder for any section the model did not provide
NO_DATA = "No data provided."


class LlmTarget(str, Enum):
    """Which reasoning model serves the request."""
    CLOUD = "cloud"   # Hosted provider behind OAuth client credentials
    LOCAL = "local"   # Model server on the local network, no auth


@dataclass(frozen=True)
class OptimizationRequest:
    """A query submitted for optimization. Immutable once accepted."""
    chat_id: int
    sql_text: str
    target_llm: LlmTarget = LlmTarget.CLOUD
    database_connection_id: Optional[int] = None
    is_mpp: bool = False


@dataclass(frozen=True)
class DatabaseTarget:
    """Resolved target-database connection for a chat."""
    connection_id: int
    chat_id: int
    dsn: str
    is_mpp: bool = False


@dataclass(frozen=True)
class ChatInfo:
    """A chat as listed to clients."""
    id: int
    title: str
    archived: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConnectionInfo:
    """A registered target database as listed to clients. Never carries the DSN."""
    id: int
    chat_id: int
    name: str
    is_mpp: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None


# =============================================================================
# Catalog metadata
# =============================================================================


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    default: Optional[str] = None


@dataclass
class IndexInfo:
    name: str
    columns: List[str]
    unique: bool = False


@dataclass
class ColumnStatistics:
    """Planner statistics for one column (``pg_stats``)."""
    distinct_count: Optional[int] = None
    null_fraction: Optional[float] = None


@dataclass
class TableStatistics:
    estimated_rows: Optional[int] = None
    page_count: Optional[int] = None
    total_size_bytes: Optional[int] = None
    per_column: Dict[str, ColumnStatistics] = field(default_factory=dict)


@dataclass
class TableMetadata:
    """Columns, indexes and statistics of one table, built per request."""
    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)
    statistics: TableStatistics = field(default_factory=TableStatistics)


# =============================================================================
# Execution plans
# =============================================================================


class OperatorKind(str, Enum):
    """Plan node kinds as printed by EXPLAIN (TEXT format)."""
    SEQ_SCAN = "Seq Scan"
    INDEX_SCAN = "Index Scan"
    INDEX_ONLY_SCAN = "Index Only Scan"
    BITMAP_HEAP_SCAN = "Bitmap Heap Scan"
    BITMAP_INDEX_SCAN = "Bitmap Index Scan"
    BITMAP_AND = "BitmapAnd"
    BITMAP_OR = "BitmapOr"
    TID_SCAN = "Tid Scan"
    SUBQUERY_SCAN = "Subquery Scan"
    FUNCTION_SCAN = "Function Scan"
    VALUES_SCAN = "Values Scan"
    CTE_SCAN = "CTE Scan"
    WORKTABLE_SCAN = "WorkTable Scan"
    NESTED_LOOP = "Nested Loop"
    HASH_JOIN = "Hash Join"
    MERGE_JOIN = "Merge Join"
    HASH = "Hash"
    SORT = "Sort"
    INCREMENTAL_SORT = "Incremental Sort"
    AGGREGATE = "Aggregate"
    HASH_AGGREGATE = "HashAggregate"
    GROUP_AGGREGATE = "GroupAggregate"
    MIXED_AGGREGATE = "MixedAggregate"
    WINDOW_AGG = "WindowAgg"
    GROUP = "Group"
    UNIQUE = "Unique"
    SET_OP = "SetOp"
    HASH_SET_OP = "HashSetOp"
    LIMIT = "Limit"
    MATERIALIZE = "Materialize"
    MEMOIZE = "Memoize"
    APPEND = "Append"
    MERGE_APPEND = "Merge Append"
    RECURSIVE_UNION = "Recursive Union"
    GATHER = "Gather"
    GATHER_MERGE = "Gather Merge"
    RESULT = "Result"
    PROJECT_SET = "ProjectSet"
    # MPP (Greenplum-style) data movement
    GATHER_MOTION = "Gather Motion"
    REDISTRIBUTE_MOTION = "Redistribute Motion"
    BROADCAST_MOTION = "Broadcast Motion"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class PlanMetrics:
    """Measured metrics from one EXPLAIN ANALYZE run.

    Only built when a probe actually ran and its output was readable; the
    absence of a measurement is ``None`` at the call site, never zeros here.
    """
    execution_time_ms: float
    planning_time_ms: Optional[float]
    total_cost: float
    row_estimate: int
    row_width: int
    raw_plan_text: str
    operators: Tuple[OperatorKind, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_time_ms": self.execution_time_ms,
            "planning_time_ms": self.planning_time_ms,
            "total_cost": self.total_cost,
            "row_estimate": self.row_estimate,
            "row_width": self.row_width,
            "raw_plan_text": self.raw_plan_text,
            "operators": [op.value for op in self.operators],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanMetrics":
        operators = []
        for name in data.get("operators", []):
            try:
                operators.append(OperatorKind(name))
            except ValueError:
                operators.append(OperatorKind.UNKNOWN)
        return cls(
            execution_time_ms=data["execution_time_ms"],
            planning_time_ms=data.get("planning_time_ms"),
            total_cost=data["total_cost"],
            row_estimate=data["row_estimate"],
            row_width=data["row_width"],
            raw_plan_text=data.get("raw_plan_text", ""),
            operators=tuple(operators),
        )


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class OptimizationFragment:
    """What the reasoning model contributed to a result."""
    optimized_sql: str
    rationale: str = NO_DATA
    performance_impact: str = NO_DATA
    potential_risks: str = NO_DATA

    @property
    def has_sql(self) -> bool:
        return bool(self.optimized_sql.strip()) and self.optimized_sql != NO_DATA


@dataclass(frozen=True)
class OptimizationResult:
    """Final, persisted outcome of one optimization request.

    Never mutated after creation; ``with_id`` returns a copy carrying the
    identifier assigned by the store.
    """
    original_sql: str
    optimized_sql: str
    rationale: str
    performance_impact: str
    potential_risks: str
    original_plan: Optional[PlanMetrics] = None
    optimized_plan: Optional[PlanMetrics] = None
    execution_time_ms: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    llm_target: LlmTarget = LlmTarget.CLOUD
    chat_id: Optional[int] = None
    connection_id: Optional[int] = None
    id: Optional[int] = None

    def with_id(self, result_id: int) -> "OptimizationResult":
        return dataclasses.replace(self, id=result_id)

    def to_dict(self) -> Dict[str, Any]:
        """Export as JSON-serializable dict."""
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "connection_id": self.connection_id,
            "llm_target": self.llm_target.value,
            "original_sql": self.original_sql,
            "optimized_sql": self.optimized_sql,
            "rationale": self.rationale,
            "performance_impact": self.performance_impact,
            "potential_risks": self.potential_risks,
            "original_plan": self.original_plan.to_dict() if self.original_plan else None,
            "optimized_plan": self.optimized_plan.to_dict() if self.optimized_plan else None,
            "execution_time_ms": self.execution_time_ms,
            "created_at": self.created_at.isoformat(),
        }

"""QueryLift SQL optimization engine.

Validates a SQL statement, measures it against the target database when one
is available, asks a reasoning model for an equivalent faster rewrite,
measures the rewrite and stores the before/after comparison.

Usage:
    from ql_sql import OptimizationEngine, OptimizationRequest

    engine = OptimizationEngine(store, connections=provider, hub=hub)
    result = await engine.optimize(OptimizationRequest(chat_id=1, sql_text=sql))
"""

__version__ = "0.1.0"

from .schemas import (
    NO_DATA,
    LlmTarget,
    OptimizationRequest,
    DatabaseTarget,
    ChatInfo,
    ConnectionInfo,
    TableMetadata,
    PlanMetrics,
    OperatorKind,
    OptimizationFragment,
    OptimizationResult,
)
from .sql_parser import validate_sql, extract_tables
from .plan_comparator import compare_plans, CANNOT_COMPARE
from .prompts import build_prompt
from .response_parser import ResponseSectionParser
from .optimizer_client import OptimizationClient
from .notifications import NotificationHub
from .store import OptimizationStore
from .result_assembler import ResultAssembler
from .pipeline import OptimizationEngine

__all__ = [
    # Schemas
    "NO_DATA",
    "LlmTarget",
    "OptimizationRequest",
    "DatabaseTarget",
    "ChatInfo",
    "ConnectionInfo",
    "TableMetadata",
    "PlanMetrics",
    "OperatorKind",
    "OptimizationFragment",
    "OptimizationResult",
    # Components
    "validate_sql",
    "extract_tables",
    "compare_plans",
    "CANNOT_COMPARE",
    "build_prompt",
    "ResponseSectionParser",
    "OptimizationClient",
    "NotificationHub",
    "OptimizationStore",
    "ResultAssembler",
    # Pipeline
    "OptimizationEngine",
]

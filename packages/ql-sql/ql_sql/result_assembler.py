"""Builds, renders and commits optimization results.

The assembler is the only place that persists results or notifies chat
subscribers. Commit order is fixed: persist, then publish. A failed persist
publishes nothing; a failed publish after a successful persist is only
logged, since the result is already durable.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .notifications import EventType, NotificationHub
from .plan_comparator import compare_plans
from .prompts import format_metadata
from .schemas import (
    DatabaseTarget,
    OptimizationFragment,
    OptimizationRequest,
    OptimizationResult,
    PlanMetrics,
    TableMetadata,
)
from .store import OptimizationStore

logger = logging.getLogger(__name__)


class ResultAssembler:

    def __init__(self, store: OptimizationStore, hub: Optional[NotificationHub] = None):
        self.store = store
        self.hub = hub

    def build(
        self,
        request: OptimizationRequest,
        fragment: OptimizationFragment,
        original_plan: Optional[PlanMetrics] = None,
        optimized_plan: Optional[PlanMetrics] = None,
        target: Optional[DatabaseTarget] = None,
    ) -> OptimizationResult:
        """Combine the request, the model's fragment and the measured plans.

        A fragment without SQL means the query is returned unchanged.
        """
        optimized_sql = fragment.optimized_sql if fragment.has_sql else request.sql_text
        execution_time_ms = None
        if optimized_plan is not None:
            execution_time_ms = int(round(optimized_plan.execution_time_ms))

        return OptimizationResult(
            original_sql=request.sql_text,
            optimized_sql=optimized_sql,
            rationale=fragment.rationale,
            performance_impact=fragment.performance_impact,
            potential_risks=fragment.potential_risks,
            original_plan=original_plan,
            optimized_plan=optimized_plan,
            execution_time_ms=execution_time_ms,
            llm_target=request.target_llm,
            chat_id=request.chat_id,
            connection_id=target.connection_id if target else None,
        )

    @staticmethod
    def render_report(
        result: OptimizationResult,
        metadata: Optional[Dict[str, TableMetadata]] = None,
    ) -> str:
        """Markdown report shown to the chat."""
        parts = [
            "## SQL optimization",
            "### Original query",
            f"```sql\n{result.original_sql.strip()}\n```",
            "### Optimized query",
            f"```sql\n{result.optimized_sql.strip()}\n```",
        ]
        if result.optimized_sql.strip() == result.original_sql.strip():
            parts.append("_The query was returned unchanged._")

        parts.extend([
            "### Plan comparison",
            f"```\n{compare_plans(result.original_plan, result.optimized_plan)}\n```",
            "### Rationale",
            result.rationale,
            "### Performance impact",
            result.performance_impact,
            "### Potential risks",
            result.potential_risks,
        ])

        if metadata:
            parts.extend(["### Appendix: table metadata", f"```\n{format_metadata(metadata)}\n```"])

        return "\n\n".join(parts) + "\n"

    async def commit(
        self,
        result: OptimizationResult,
        metadata: Optional[Dict[str, TableMetadata]] = None,
    ) -> OptimizationResult:
        """Persist ``result``, then notify the chat.

        Returns:
            The result carrying its generated id

        Raises:
            PersistenceFailed: Nothing was stored and nothing was published
        """
        result_id = await self.store.save_result(result)
        saved = result.with_id(result_id)

        if self.hub is not None and saved.chat_id is not None:
            try:
                self.hub.publish(
                    saved.chat_id,
                    EventType.OPTIMIZATION_COMPLETE,
                    id=saved.id,
                    report=self.render_report(saved, metadata),
                    result=saved.to_dict(),
                )
            except Exception as e:
                logger.warning("Failed to notify chat %s about result %s: %s", saved.chat_id, saved.id, e)

        return saved

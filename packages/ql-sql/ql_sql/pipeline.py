"""QueryLift optimization pipeline.

Stages for one request:
1. Validate:  parse the SQL (no I/O before this succeeds)
2. Resolve:   chat exists, connection belongs to the chat
3. Extract:   referenced base tables
4. Measure:   catalog metadata and EXPLAIN ANALYZE of the original query,
              concurrently, each on its own borrowed connection
5. Rewrite:   prompt -> reasoning model (retry/backoff) -> parsed fragment
6. Measure:   EXPLAIN ANALYZE of the optimized query
7. Commit:    build result, persist, notify (shielded from cancellation)

Metadata and plan failures downgrade to "absent". An unavailable model or
failed authentication downgrades to returning the original query unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from ql_shared.config import Settings, get_settings
from ql_shared.errors import AuthUnavailable, InvalidSyntax, OptimizationUnavailable, ResourceNotFound
from ql_shared.llm import ChatModel, create_chat_model

from .execution.connections import ConnectionProvider
from .execution.metadata import MetadataCollector
from .execution.plan_probe import PlanProbe
from .notifications import NotificationHub
from .optimizer_client import OptimizationClient
from .prompts import build_prompt
from .response_parser import ResponseSectionParser
from .result_assembler import ResultAssembler
from .schemas import (
    DatabaseTarget,
    LlmTarget,
    OptimizationFragment,
    OptimizationRequest,
    OptimizationResult,
    PlanMetrics,
    TableMetadata,
)
from .sql_parser import extract_tables, is_query, validate_sql
from .store import OptimizationStore

logger = logging.getLogger(__name__)

ModelFactory = Callable[[LlmTarget], ChatModel]


def degraded_fragment(sql_text: str, reason: str) -> OptimizationFragment:
    """Fragment that hands the original query back with an explanation."""
    return OptimizationFragment(
        optimized_sql=sql_text,
        rationale=f"The query was not optimized: {reason}. The original query is returned unchanged.",
        performance_impact="None: the query was not rewritten.",
        potential_risks="None: the query was not rewritten.",
    )


class OptimizationEngine:
    """Runs optimization requests end to end.

    Usage:
        engine = OptimizationEngine(store, connections=PoolConnectionProvider(), hub=hub)
        result = await engine.optimize(OptimizationRequest(chat_id=1, sql_text="SELECT ..."))
        history = await engine.history(1)
    """

    def __init__(
        self,
        store: OptimizationStore,
        connections: Optional[ConnectionProvider] = None,
        hub: Optional[NotificationHub] = None,
        model_factory: Optional[ModelFactory] = None,
        settings: Optional[Settings] = None,
        metadata_collector: Optional[MetadataCollector] = None,
        plan_probe: Optional[PlanProbe] = None,
        parser: Optional[ResponseSectionParser] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.connections = connections
        self.assembler = ResultAssembler(store, hub)
        self.model_factory = model_factory or (lambda target: create_chat_model(target, self.settings))
        self.metadata_collector = metadata_collector or MetadataCollector(
            query_timeout=self.settings.metadata_query_timeout_seconds,
        )
        self.plan_probe = plan_probe or PlanProbe(
            statement_timeout_ms=self.settings.db_statement_timeout_ms,
            timeout=self.settings.db_command_timeout_seconds,
        )
        self.parser = parser or ResponseSectionParser()

        # Stage limits on top of the per-call timeouts
        self.metadata_timeout = self.settings.db_command_timeout_seconds
        attempts = max(1, self.settings.llm_max_attempts)
        backoff_total = sum(
            self.settings.llm_backoff_initial_seconds * 2 ** i for i in range(attempts - 1)
        )
        self.model_timeout = self.settings.llm_timeout_seconds * attempts + backoff_total

    # -----------------------------------------------------------------
    # Inbound operations
    # -----------------------------------------------------------------

    async def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        """Optimize one SQL statement.

        Raises:
            InvalidSyntax: The SQL does not parse (nothing else is touched)
            ResourceNotFound: Unknown chat, or connection not in this chat
            InvalidUpstreamRequest: The model endpoint rejected the request
            PersistenceFailed: The result could not be stored
        """
        statement = validate_sql(request.sql_text)
        logger.info(
            "Optimizing query for chat %s (target=%s, connection=%s)",
            request.chat_id, request.target_llm.value, request.database_connection_id,
        )

        target = await self._resolve_target(request)
        is_mpp = request.is_mpp or (target.is_mpp if target else False)
        tables = extract_tables(statement)
        measurable = is_query(statement)
        if target is not None and not measurable:
            logger.info("Statement is not a query, skipping plan analysis")

        metadata: Dict[str, TableMetadata] = {}
        original_plan: Optional[PlanMetrics] = None
        if target is not None:
            metadata, original_plan = await asyncio.gather(
                self._collect_metadata(target, tables),
                self._probe(target, request.sql_text, is_mpp) if measurable else _absent(),
            )

        prompt = build_prompt(
            request.sql_text,
            plan=original_plan,
            metadata=metadata,
            is_mpp=is_mpp,
            has_connection=target is not None,
        )
        fragment = await self._ask_model(request, prompt)

        optimized_plan: Optional[PlanMetrics] = None
        if target is not None and measurable:
            if not fragment.has_sql or fragment.optimized_sql.strip() == request.sql_text.strip():
                optimized_plan = original_plan
            else:
                optimized_plan = await self._probe_optimized(target, fragment.optimized_sql, is_mpp)

        result = self.assembler.build(request, fragment, original_plan, optimized_plan, target)
        # Past this point the request commits even if the caller goes away
        saved = await asyncio.shield(self.assembler.commit(result, metadata))
        logger.info("Optimization %s complete for chat %s", saved.id, request.chat_id)
        return saved

    async def history(self, chat_id: int) -> List[OptimizationResult]:
        """Results for a chat, newest first."""
        if not await self.store.chat_exists(chat_id):
            raise ResourceNotFound(f"Chat {chat_id} not found")
        return await self.store.list_results(chat_id)

    # -----------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------

    async def _resolve_target(self, request: OptimizationRequest) -> Optional[DatabaseTarget]:
        if not await self.store.chat_exists(request.chat_id):
            raise ResourceNotFound(f"Chat {request.chat_id} not found")
        if request.database_connection_id is None:
            return None
        target = await self.store.get_connection(request.chat_id, request.database_connection_id)
        if self.connections is None:
            logger.warning("No connection provider configured, treating request as disconnected")
            return None
        return target

    async def _collect_metadata(self, target: DatabaseTarget, tables: Sequence[str]) -> Dict[str, TableMetadata]:
        if not tables:
            return {}
        try:
            async with self.connections.acquire(target) as conn:
                return await asyncio.wait_for(
                    self.metadata_collector.collect(conn, tables),
                    timeout=self.metadata_timeout,
                )
        except asyncio.TimeoutError:
            logger.warning("Metadata collection timed out after %.1fs", self.metadata_timeout)
        except Exception as e:
            logger.warning("Metadata collection failed: %s", e)
        return {}

    async def _probe(self, target: DatabaseTarget, sql: str, is_mpp: bool) -> Optional[PlanMetrics]:
        try:
            async with self.connections.acquire(target) as conn:
                return await self.plan_probe.probe(conn, sql, is_mpp)
        except Exception as e:
            logger.warning("Could not borrow a connection for plan analysis: %s", e)
            return None

    async def _probe_optimized(self, target: DatabaseTarget, sql: str, is_mpp: bool) -> Optional[PlanMetrics]:
        try:
            statement = validate_sql(sql)
        except InvalidSyntax as e:
            logger.warning("Model returned SQL that does not parse, not measuring it: %s", e)
            return None
        if not is_query(statement):
            logger.warning("Model returned a non-query statement, not measuring it")
            return None
        return await self._probe(target, sql, is_mpp)

    async def _ask_model(self, request: OptimizationRequest, prompt: str) -> OptimizationFragment:
        try:
            client = OptimizationClient.from_settings(self.model_factory(request.target_llm), self.settings)
            client.parser = self.parser
            return await asyncio.wait_for(client.optimize(prompt), timeout=self.model_timeout)
        except AuthUnavailable as e:
            logger.error("Authentication with the model provider failed: %s", e)
            return degraded_fragment(request.sql_text, "authentication with the model provider failed")
        except OptimizationUnavailable as e:
            logger.error("Model unavailable: %s", e)
            return degraded_fragment(request.sql_text, "the reasoning model is unavailable")
        except asyncio.TimeoutError:
            logger.error("Model stage timed out after %.1fs", self.model_timeout)
            return degraded_fragment(request.sql_text, "the reasoning model did not answer in time")


async def _absent() -> Any:
    return None

"""Persistence adapter for chats, target connections and optimization results."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ql_shared.database import Chat, DatabaseConnection, OptimizationRecord
from ql_shared.errors import PersistenceFailed, ResourceNotFound

from .schemas import ChatInfo, ConnectionInfo, DatabaseTarget, LlmTarget, OptimizationResult, PlanMetrics

logger = logging.getLogger(__name__)


def _plan_to_json(plan: Optional[PlanMetrics]) -> Optional[dict]:
    return plan.to_dict() if plan is not None else None


def _plan_from_json(data: Optional[dict]) -> Optional[PlanMetrics]:
    return PlanMetrics.from_dict(data) if data else None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without a zone
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_to_result(record: OptimizationRecord) -> OptimizationResult:
    return OptimizationResult(
        id=record.id,
        chat_id=record.chat_id,
        connection_id=record.connection_id,
        llm_target=LlmTarget(record.llm_target),
        original_sql=record.original_sql,
        optimized_sql=record.optimized_sql,
        rationale=record.rationale,
        performance_impact=record.performance_impact,
        potential_risks=record.potential_risks,
        original_plan=_plan_from_json(record.original_plan),
        optimized_plan=_plan_from_json(record.optimized_plan),
        execution_time_ms=record.execution_time_ms,
        created_at=_as_utc(record.created_at),
    )


def chat_to_info(chat: Chat) -> ChatInfo:
    return ChatInfo(id=chat.id, title=chat.title, archived=bool(chat.archived), created_at=_as_utc(chat.created_at))


def connection_to_info(connection: DatabaseConnection) -> ConnectionInfo:
    return ConnectionInfo(
        id=connection.id,
        chat_id=connection.chat_id,
        name=connection.name,
        is_mpp=bool(connection.is_mpp),
        is_active=bool(connection.is_active),
        created_at=_as_utc(connection.created_at),
    )


class OptimizationStore:
    """Async SQLAlchemy store.

    Each operation runs in its own session; ``save_result`` commits exactly
    one row or nothing.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def chat_exists(self, chat_id: int) -> bool:
        try:
            async with self.session_factory() as session:
                found = await session.scalar(select(Chat.id).where(Chat.id == chat_id))
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to look up chat {chat_id}: {e}") from e
        return found is not None

    async def get_connection(self, chat_id: int, connection_id: int) -> DatabaseTarget:
        """Resolve an active connection registered for ``chat_id``.

        Raises:
            ResourceNotFound: No such connection in this chat
        """
        try:
            async with self.session_factory() as session:
                record = await session.scalar(
                    select(DatabaseConnection).where(
                        DatabaseConnection.id == connection_id,
                        DatabaseConnection.chat_id == chat_id,
                        DatabaseConnection.is_active.is_(True),
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to look up connection {connection_id}: {e}") from e

        if record is None:
            raise ResourceNotFound(f"Database connection {connection_id} not found in chat {chat_id}")
        return DatabaseTarget(
            connection_id=record.id,
            chat_id=record.chat_id,
            dsn=record.dsn,
            is_mpp=bool(record.is_mpp),
        )

    async def save_result(self, result: OptimizationResult) -> int:
        """Insert ``result`` and return its generated id.

        Raises:
            PersistenceFailed: The row could not be written
        """
        record = OptimizationRecord(
            chat_id=result.chat_id,
            connection_id=result.connection_id,
            llm_target=result.llm_target.value,
            original_sql=result.original_sql,
            optimized_sql=result.optimized_sql,
            rationale=result.rationale,
            performance_impact=result.performance_impact,
            potential_risks=result.potential_risks,
            original_plan=_plan_to_json(result.original_plan),
            optimized_plan=_plan_to_json(result.optimized_plan),
            execution_time_ms=result.execution_time_ms,
            created_at=result.created_at,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(record)
                    await session.flush()
                    result_id = record.id
        except SQLAlchemyError as e:
            logger.error("Failed to save optimization result for chat %s: %s", result.chat_id, e)
            raise PersistenceFailed(f"Failed to save optimization result: {e}") from e

        logger.info("Saved optimization result %s for chat %s", result_id, result.chat_id)
        return result_id

    async def list_results(self, chat_id: int, limit: Optional[int] = None) -> List[OptimizationResult]:
        """Results for a chat, newest first."""
        query = (
            select(OptimizationRecord)
            .where(OptimizationRecord.chat_id == chat_id)
            .order_by(OptimizationRecord.created_at.desc(), OptimizationRecord.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self.session_factory() as session:
                records = (await session.scalars(query)).all()
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to load results for chat {chat_id}: {e}") from e
        return [record_to_result(r) for r in records]

    async def create_chat(self, title: str = "New chat") -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    chat = Chat(title=title)
                    session.add(chat)
                    await session.flush()
                    return chat.id
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to create chat: {e}") from e

    async def add_connection(self, chat_id: int, dsn: str, name: str = "", is_mpp: bool = False) -> int:
        if not await self.chat_exists(chat_id):
            raise ResourceNotFound(f"Chat {chat_id} not found")
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    connection = DatabaseConnection(chat_id=chat_id, dsn=dsn, name=name, is_mpp=is_mpp)
                    session.add(connection)
                    await session.flush()
                    return connection.id
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to register connection: {e}") from e

    async def get_chat(self, chat_id: int) -> ChatInfo:
        """Raises ResourceNotFound for an unknown chat."""
        try:
            async with self.session_factory() as session:
                chat = await session.get(Chat, chat_id)
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to look up chat {chat_id}: {e}") from e
        if chat is None:
            raise ResourceNotFound(f"Chat {chat_id} not found")
        return chat_to_info(chat)

    async def list_chats(self, include_archived: bool = False) -> List[ChatInfo]:
        """Chats, newest first."""
        query = select(Chat).order_by(Chat.created_at.desc(), Chat.id.desc())
        if not include_archived:
            query = query.where(Chat.archived.is_(False))
        try:
            async with self.session_factory() as session:
                chats = (await session.scalars(query)).all()
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to list chats: {e}") from e
        return [chat_to_info(c) for c in chats]

    async def archive_chat(self, chat_id: int) -> ChatInfo:
        """Hide a chat from the default listing. Its history stays readable."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    chat = await session.get(Chat, chat_id)
                    if chat is None:
                        raise ResourceNotFound(f"Chat {chat_id} not found")
                    chat.archived = True
                info = chat_to_info(chat)
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to archive chat {chat_id}: {e}") from e
        logger.info("Archived chat %s", chat_id)
        return info

    async def list_connections(self, chat_id: int) -> List[ConnectionInfo]:
        """Active connections registered for ``chat_id``, oldest first."""
        if not await self.chat_exists(chat_id):
            raise ResourceNotFound(f"Chat {chat_id} not found")
        query = (
            select(DatabaseConnection)
            .where(DatabaseConnection.chat_id == chat_id, DatabaseConnection.is_active.is_(True))
            .order_by(DatabaseConnection.id)
        )
        try:
            async with self.session_factory() as session:
                connections = (await session.scalars(query)).all()
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to list connections for chat {chat_id}: {e}") from e
        return [connection_to_info(c) for c in connections]

    async def get_connection_info(self, chat_id: int, connection_id: int) -> ConnectionInfo:
        try:
            async with self.session_factory() as session:
                record = await session.scalar(
                    select(DatabaseConnection).where(
                        DatabaseConnection.id == connection_id,
                        DatabaseConnection.chat_id == chat_id,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Failed to look up connection {connection_id}: {e}") from e
        if record is None:
            raise ResourceNotFound(f"Database connection {connection_id} not found in chat {chat_id}")
        return connection_to_info(record)

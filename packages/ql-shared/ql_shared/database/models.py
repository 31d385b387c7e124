"""SQLAlchemy models for the QueryLift application database.

Chats own the target-database connections users register and the
optimization results produced for them.
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    Text,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class FlexibleJSON(TypeDecorator):
    """JSON type that uses JSONB on PostgreSQL, JSON elsewhere."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB)
        else:
            return dialect.type_descriptor(JSON)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Chat(Base):
    """A conversation in which a user submits queries for optimization."""

    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="New chat")
    archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    connections: Mapped[List["DatabaseConnection"]] = relationship(
        "DatabaseConnection", back_populates="chat", cascade="all, delete-orphan"
    )
    results: Mapped[List["OptimizationRecord"]] = relationship(
        "OptimizationRecord", back_populates="chat", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Chat(id={self.id}, title='{self.title}')>"


class DatabaseConnection(Base):
    """A target database registered for a chat.

    The DSN is only used to borrow pooled connections for catalog
    introspection and EXPLAIN ANALYZE.
    """

    __tablename__ = "database_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    dsn: Mapped[str] = mapped_column(Text, nullable=False)
    is_mpp: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    # Relationships
    chat: Mapped["Chat"] = relationship("Chat", back_populates="connections")

    __table_args__ = (
        Index("ix_database_connections_chat", "chat_id"),
    )

    def __repr__(self) -> str:
        return f"<DatabaseConnection(id={self.id}, chat_id={self.chat_id}, mpp={self.is_mpp})>"


class OptimizationRecord(Base):
    """A persisted optimization result. Written once, never updated."""

    __tablename__ = "optimization_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    connection_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("database_connections.id", ondelete="SET NULL"), nullable=True
    )
    llm_target: Mapped[str] = mapped_column(String(20), nullable=False)

    original_sql: Mapped[str] = mapped_column(Text, nullable=False)
    optimized_sql: Mapped[str] = mapped_column(Text, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    performance_impact: Mapped[str] = mapped_column(Text, nullable=False)
    potential_risks: Mapped[str] = mapped_column(Text, nullable=False)

    # PlanMetrics as dicts; NULL means "not measured", never zero
    original_plan: Mapped[Optional[dict]] = mapped_column(FlexibleJSON, nullable=True)
    optimized_plan: Mapped[Optional[dict]] = mapped_column(FlexibleJSON, nullable=True)
    execution_time_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    chat: Mapped["Chat"] = relationship("Chat", back_populates="results")

    __table_args__ = (
        Index("ix_optimization_results_chat_created", "chat_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OptimizationRecord(id={self.id}, chat_id={self.chat_id}, target='{self.llm_target}')>"

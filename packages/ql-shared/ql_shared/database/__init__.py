"""Database module for QueryLift shared infrastructure."""

from .models import (
    Base,
    FlexibleJSON,
    Chat,
    DatabaseConnection,
    OptimizationRecord,
)
from .connection import (
    get_database_url,
    get_engine,
    get_session_factory,
    make_session_factory,
    init_db,
    close_db,
)

__all__ = [
    # Models
    "Base",
    "FlexibleJSON",
    "Chat",
    "DatabaseConnection",
    "OptimizationRecord",
    # Connection
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "init_db",
    "close_db",
]

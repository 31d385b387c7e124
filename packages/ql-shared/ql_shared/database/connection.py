"""Application database engine and session management for QueryLift."""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)

from ..config import Settings, get_settings
from .models import Base


# Global engine instance
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url(settings: Optional[Settings] = None) -> str:
    """Get the async database URL.

    ``QL_DATABASE_URL`` wins when set; plain ``postgres://`` and
    ``postgresql://`` URLs are switched to the asyncpg driver.

    Raises:
        ValueError: If a remote database is configured without a password.
    """
    settings = settings or get_settings()

    db_url = settings.database_url
    if db_url:
        if db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return db_url

    if not settings.db_password and settings.db_host != "localhost":
        raise ValueError(
            "Database password required. Set QL_DB_PASSWORD environment variable."
        )

    return (
        f"postgresql+asyncpg://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        database_url = get_database_url(settings)

        kwargs = {}
        if database_url.startswith("postgresql"):
            kwargs = {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": 30,
                "pool_recycle": 1800,
            }

        _engine = create_async_engine(database_url, echo=settings.db_echo, **kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create tables (development and tests; production uses migrations)."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None

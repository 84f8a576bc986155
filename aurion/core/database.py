"""
Async SQLAlchemy engine and session management. One embedded database for
facts, history, sessions and the search cache.
"""

import logging
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base. All models inherit from this."""
    pass


# Lazy globals, initialized on first call to get_engine()
_engine = None
_session_factory = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine. SQLite gets WAL + enforced foreign keys."""
    is_sqlite = url.startswith("sqlite")
    kwargs = {"echo": echo}
    if not is_sqlite:
        kwargs["pool_size"] = 10
        kwargs["max_overflow"] = 5
        kwargs["pool_pre_ping"] = True

    engine = create_async_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.debug)
        logger.info("Database engine created (%s)", settings.database_url.split(":", 1)[0])
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def get_db() -> AsyncSession:
    """FastAPI dependency. Yields a DB session per request."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables on the given engine."""
    async with engine.begin() as conn:
        # Import all models so they register with Base.metadata
        from .. import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Create all tables. Called on startup."""
    await create_tables(get_engine())
    logger.info("Database tables created/verified")


async def close_db():
    """Dispose engine. Called on shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")

"""
FastAPI dependencies. Injected into route handlers.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import get_settings
from .database import get_db as _get_db, get_session_factory
from ..services.embeddings import OllamaEmbeddingProvider
from ..services.fact_store import FactStore

# Lazy global, built on first request, dropped on shutdown
_fact_store: Optional[FactStore] = None


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


def get_sessions() -> async_sessionmaker[AsyncSession]:
    """Session factory, for work that outlives the request (streaming)."""
    return get_session_factory()


def get_fact_store() -> FactStore:
    """The process-wide fact memory, wired from settings."""
    global _fact_store
    if _fact_store is None:
        settings = get_settings()
        _fact_store = FactStore(
            get_session_factory(),
            OllamaEmbeddingProvider(settings.embed_model),
            similarity_threshold=settings.fact_similarity_threshold,
            default_source=settings.fact_default_source,
        )
    return _fact_store


def reset_fact_store() -> None:
    global _fact_store
    _fact_store = None

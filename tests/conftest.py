# tests/conftest.py

from pathlib import Path

import httpx
import pytest

from aurion.core.database import build_engine, build_session_factory, create_tables
from aurion.core.dependencies import get_db, get_fact_store, get_sessions
from aurion.factory import create_app
from aurion.services.fact_store import FactStore

from .fakes import BagOfWordsEmbedder, MutableClock


@pytest.fixture
async def engine(tmp_path: Path):
    """Async engine on a throwaway SQLite file (no tables yet)."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'aurion-test.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    await create_tables(engine)
    return build_session_factory(engine)


@pytest.fixture
def embedder() -> BagOfWordsEmbedder:
    return BagOfWordsEmbedder()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store(session_factory, embedder, clock) -> FactStore:
    """FactStore on the temporary database with deterministic fakes."""
    return FactStore(session_factory, embedder, similarity_threshold=0.85, clock=clock)


@pytest.fixture
def app(session_factory, store):
    """App wired to the temporary database and the test fact store."""
    application = create_app()

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_fact_store] = lambda: store
    application.dependency_overrides[get_sessions] = lambda: session_factory
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

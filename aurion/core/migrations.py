"""
One-time schema migrations for databases written by older proxy versions.

Runs at startup, never at request time:
  - history.session_id is added when missing (before create_all).
  - The legacy `facts` table (q/a or question/correct_answer columns) is
    imported into the fact memory, then renamed to `facts_legacy`.
"""

import logging
import time
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .errors import EmbeddingProviderError, ValidationError
from ..services.fact_store import FactStore

logger = logging.getLogger(__name__)

LEGACY_FACTS_TABLE = "facts"
LEGACY_ARCHIVE_TABLE = "facts_legacy"

# Oldest layout first so newer rows win on the same normalized question
LEGACY_COLUMN_PAIRS = (("question", "correct_answer"), ("q", "a"))


async def _columns(conn: AsyncConnection, table: str) -> Optional[set[str]]:
    """Column names of `table`, or None if it does not exist."""
    def _inspect(sync_conn):
        insp = inspect(sync_conn)
        if not insp.has_table(table):
            return None
        return {c["name"] for c in insp.get_columns(table)}

    return await conn.run_sync(_inspect)


async def ensure_history_session_column(engine: AsyncEngine) -> bool:
    """Add history.session_id to pre-session databases. True if added."""
    async with engine.begin() as conn:
        cols = await _columns(conn, "history")
        if cols is None or "session_id" in cols:
            return False
        await conn.execute(text("ALTER TABLE history ADD COLUMN session_id TEXT"))
    logger.info("[migrate] history.session_id added")
    return True


async def read_legacy_facts(engine: AsyncEngine) -> Optional[list[tuple[str, str]]]:
    """(question, answer) rows of the legacy table, or None if there is none."""
    async with engine.connect() as conn:
        cols = await _columns(conn, LEGACY_FACTS_TABLE)
        if cols is None:
            return None

        pairs: list[tuple[str, str]] = []
        for q_col, a_col in LEGACY_COLUMN_PAIRS:
            if q_col in cols and a_col in cols:
                order = " ORDER BY id" if "id" in cols else ""
                result = await conn.execute(
                    text(f"SELECT {q_col}, {a_col} FROM {LEGACY_FACTS_TABLE}{order}")
                )
                pairs.extend((row[0], row[1]) for row in result.all())
        return pairs


async def migrate_legacy_facts(engine: AsyncEngine, facts: FactStore) -> int:
    """
    Import the legacy facts table through the fact memory. Returns the number
    of facts imported. If the embedding provider is down, nothing is renamed
    and the import runs again on next start.
    """
    pairs = await read_legacy_facts(engine)
    if pairs is None:
        return 0

    imported = 0
    for question, answer in pairs:
        if not (question or "").strip() or not (answer or "").strip():
            continue
        try:
            await facts.upsert(question, answer, source="legacy-import")
        except ValidationError as e:
            logger.warning("[migrate] skipped legacy fact %r: %s", question[:60], e)
            continue
        except EmbeddingProviderError as e:
            logger.warning("[migrate] legacy facts import postponed: %s", e)
            return imported
        imported += 1

    async with engine.begin() as conn:
        archive = LEGACY_ARCHIVE_TABLE
        if await _columns(conn, archive) is not None:
            archive = f"{LEGACY_ARCHIVE_TABLE}_{int(time.time())}"
        await conn.execute(text(f"ALTER TABLE {LEGACY_FACTS_TABLE} RENAME TO {archive}"))

    logger.info("[migrate] imported %d legacy fact(s); old table kept as %s", imported, archive)
    return imported

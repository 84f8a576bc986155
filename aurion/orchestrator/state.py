"""
Conversation state: sessions and message history.

History rows are written for every answered prompt (memory hit, research or
LLM) and the last few are replayed as context in the next LLM prompt.
"""

import logging
import random
import string
import time
from typing import Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.conversation import ChatSession, HistoryMessage

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Conversation"

_B36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _B36[r] + out
        if n == 0:
            return out


def new_session_id() -> str:
    """s_<base36 epoch ms>_<6 random base36 chars>"""
    suffix = "".join(random.choices(_B36, k=6))
    return f"s_{_base36(int(time.time() * 1000))}_{suffix}"


async def start_session(
    db: AsyncSession,
    session_id: Optional[str] = None,
    title: Optional[str] = None,
) -> str:
    """Create a session if it does not exist yet. Returns its id."""
    sid = session_id or new_session_id()
    if await db.get(ChatSession, sid) is None:
        db.add(ChatSession(id=sid, title=title or DEFAULT_TITLE))
        await db.flush()
        logger.info("Created session: %s", sid)
    return sid


async def list_sessions(db: AsyncSession) -> list[ChatSession]:
    result = await db.execute(select(ChatSession).order_by(ChatSession.created_at.desc()))
    return list(result.scalars().all())


async def count_sessions(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(ChatSession))
    return result.scalar_one()


async def rename_session(db: AsyncSession, session_id: str, title: Optional[str]) -> bool:
    convo = await db.get(ChatSession, session_id)
    if convo is None:
        return False
    convo.title = title or DEFAULT_TITLE
    await db.flush()
    return True


async def push_history(
    db: AsyncSession,
    session_id: Optional[str],
    user_id: Optional[str],
    role: str,
    content: str,
    style: str = "genz",
) -> HistoryMessage:
    msg = HistoryMessage(
        session_id=session_id,
        user_id=user_id,
        role=role,
        content=content,
        style=style,
    )
    db.add(msg)
    await db.flush()
    return msg


async def record_exchange(
    db: AsyncSession,
    session_id: Optional[str],
    user_id: Optional[str],
    prompt: str,
    reply: str,
    style: str = "genz",
) -> None:
    """Store one user prompt and the assistant reply to it."""
    await push_history(db, session_id, user_id, "user", prompt, style)
    await push_history(db, session_id, user_id, "assistant", reply, style)


async def pull_recent_history(
    db: AsyncSession,
    session_id: Optional[str],
    limit: int = 6,
) -> list[HistoryMessage]:
    """Last `limit` messages, oldest first. Without a session, across all sessions."""
    query = select(HistoryMessage)
    if session_id:
        query = query.where(HistoryMessage.session_id == session_id)
    result = await db.execute(query.order_by(HistoryMessage.id.desc()).limit(limit))
    return list(reversed(result.scalars().all()))


async def session_history(db: AsyncSession, session_id: str) -> list[HistoryMessage]:
    result = await db.execute(
        select(HistoryMessage)
        .where(HistoryMessage.session_id == session_id)
        .order_by(HistoryMessage.id.asc())
    )
    return list(result.scalars().all())


async def latest_history(db: AsyncSession, limit: int = 200) -> list[HistoryMessage]:
    result = await db.execute(
        select(HistoryMessage).order_by(HistoryMessage.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def clear_history(db: AsyncSession, session_id: Optional[str] = None) -> int:
    """Delete the messages of one session, or every message when no id is given."""
    stmt = delete(HistoryMessage)
    if session_id is not None:
        stmt = stmt.where(HistoryMessage.session_id == session_id)
    result = await db.execute(stmt)
    return result.rowcount or 0


def render_context(history: list[HistoryMessage]) -> str:
    """Recent turns as a prompt prefix."""
    if not history:
        return ""
    lines = [f"{m.role}: {m.content}".strip() for m in history]
    return "Contexte récent:\n" + "\n".join(lines) + "\n---\n"

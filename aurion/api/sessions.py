"""
Sessions & history API.

POST /session/start          — Create (or reuse) a session
GET  /sessions               — List sessions, newest first
GET  /session/{id}/history   — Messages of one session
POST /session/{id}/rename    — Rename a session
POST /session/{id}/clear     — Delete the messages of one session
GET  /history                — Last 200 messages, all sessions
POST /history/clear          — Delete every message
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..models.conversation import HistoryMessage
from ..orchestrator import state

logger = logging.getLogger(__name__)

sessions_router = APIRouter(tags=["sessions"])


class StartSessionRequest(BaseModel):
    session_id: Optional[str] = None
    title: Optional[str] = None


class RenameRequest(BaseModel):
    title: Optional[str] = None


class SessionOut(BaseModel):
    id: str
    title: Optional[str] = None
    created_at: str


class MessageOut(BaseModel):
    id: int
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    role: str
    content: str
    style: Optional[str] = None
    created_at: str


def _message_out(m: HistoryMessage) -> MessageOut:
    return MessageOut(
        id=m.id,
        session_id=m.session_id,
        user_id=m.user_id,
        role=m.role,
        content=m.content,
        style=m.style,
        created_at=m.created_at.isoformat() if m.created_at else "",
    )


@sessions_router.post("/session/start")
async def start_session(
    request: Optional[StartSessionRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    request = request or StartSessionRequest()
    session_id = await state.start_session(db, request.session_id, request.title)
    return {"ok": True, "session_id": session_id}


@sessions_router.get("/sessions")
async def list_sessions(db: AsyncSession = Depends(get_db)):
    rows = await state.list_sessions(db)
    items = [
        SessionOut(
            id=s.id,
            title=s.title,
            created_at=s.created_at.isoformat() if s.created_at else "",
        )
        for s in rows
    ]
    return {"ok": True, "items": items}


@sessions_router.get("/session/{session_id}/history")
async def get_session_history(session_id: str, db: AsyncSession = Depends(get_db)):
    rows = await state.session_history(db, session_id)
    return {"ok": True, "items": [_message_out(m) for m in rows]}


@sessions_router.post("/session/{session_id}/rename")
async def rename_session(
    session_id: str,
    request: Optional[RenameRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    title = request.title if request else None
    renamed = await state.rename_session(db, session_id, title)
    return {"ok": True, "renamed": renamed}


@sessions_router.post("/session/{session_id}/clear")
async def clear_session(session_id: str, db: AsyncSession = Depends(get_db)):
    deleted = await state.clear_history(db, session_id)
    logger.info("Cleared %d message(s) of session %s", deleted, session_id)
    return {"ok": True, "deleted": deleted}


@sessions_router.get("/history")
async def history(db: AsyncSession = Depends(get_db)):
    rows = await state.latest_history(db, limit=200)
    return {"ok": True, "items": [_message_out(m) for m in rows]}


@sessions_router.post("/history/clear")
async def clear_all_history(db: AsyncSession = Depends(get_db)):
    deleted = await state.clear_history(db)
    logger.info("Cleared all history (%d message(s))", deleted)
    return {"ok": True, "deleted": deleted}

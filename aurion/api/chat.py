"""
Chat API: regular + streaming endpoints.

POST /aurion        — Standard request/response
POST /aurion_stream — Plain-text streaming (buffer=true → same JSON as /aurion)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.dependencies import get_db, get_fact_store, get_sessions
from ..orchestrator.orchestrator import handle_prompt, prepare_stream, stream_reply
from ..orchestrator.postprocess import ensure_complete, tidy
from ..orchestrator.state import record_exchange
from ..services import ollama
from ..services.fact_store import FactStore

logger = logging.getLogger(__name__)

chat_router = APIRouter(tags=["chat"])


class PromptRequest(BaseModel):
    prompt: str
    style: str = "genz"
    user_id: Optional[str] = None
    model: Optional[str] = None
    session_id: Optional[str] = None
    response_length: str = "medium"

    @field_validator("prompt")
    @classmethod
    def prompt_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt requis")
        return v


class StreamRequest(PromptRequest):
    buffer: bool = False


class PromptResponse(BaseModel):
    reply: str
    meta: dict = {}


@chat_router.post("/aurion", response_model=PromptResponse)
async def aurion(
    request: PromptRequest,
    db: AsyncSession = Depends(get_db),
    facts: FactStore = Depends(get_fact_store),
):
    """Answer a prompt: fact memory → research → LLM."""
    result = await handle_prompt(
        prompt=request.prompt,
        db=db,
        facts=facts,
        session_id=request.session_id,
        user_id=request.user_id,
        style=request.style,
        model=request.model,
        response_length=request.response_length,
    )
    return PromptResponse(reply=result["reply"], meta=result.get("meta") or {})


@chat_router.post("/aurion_stream")
async def aurion_stream(
    request: StreamRequest,
    db: AsyncSession = Depends(get_db),
    facts: FactStore = Depends(get_fact_store),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """
    Stream the answer as plain text chunks.

    Memory and research hits are returned as JSON like /aurion, since there
    is nothing to stream.
    """
    shortcut, plan = await prepare_stream(
        prompt=request.prompt,
        db=db,
        facts=facts,
        session_id=request.session_id,
        user_id=request.user_id,
        style=request.style,
        model=request.model,
        response_length=request.response_length,
    )
    if shortcut is not None:
        return PromptResponse(reply=shortcut["reply"], meta=shortcut.get("meta") or {})

    if request.buffer:
        text = await ollama.generate(
            plan["final_prompt"], plan["system"], model=plan["model"], options=plan["options"],
        )
        reply = await ensure_complete(tidy(text), plan["system"], plan["model"])
        await record_exchange(db, plan["session_id"], plan["user_id"], plan["prompt"], reply, plan["style"])
        return PromptResponse(
            reply=reply,
            meta={"mode": "llm", "buffered": True, "model": plan["model"], **plan["memory_meta"]},
        )

    return StreamingResponse(
        stream_reply(plan, sessions),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )

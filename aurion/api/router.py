"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.dependencies import get_db, get_fact_store
from ..orchestrator.state import count_sessions
from ..services.fact_store import FactStore

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health(
    db: AsyncSession = Depends(get_db),
    facts: FactStore = Depends(get_fact_store),
):
    settings = get_settings()
    return {
        "ok": True,
        "models": settings.models,
        "ctx": settings.llm_num_ctx,
        "predict": settings.llm_num_predict,
        "embed_model": settings.embed_model,
        "tavily": bool(settings.tavily_api_key),
        "sessions": await count_sessions(db),
        "facts": await facts.count(),
    }


@router.get("/models")
async def models():
    return {"ok": True, "models": get_settings().models}


# ── Feature routes ───────────────────────────────────────────────────

from .chat import chat_router
from .facts import facts_router
from .sessions import sessions_router

router.include_router(chat_router)
router.include_router(facts_router)
router.include_router(sessions_router)

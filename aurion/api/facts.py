"""
Fact memory API.

POST   /feedback      — Teach a correction (upsert by normalized question)
GET    /facts         — List live facts
POST   /facts/lookup  — Closest fact for a question
DELETE /facts         — Forget a question
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.dependencies import get_fact_store
from ..services.fact_store import FactStore

logger = logging.getLogger(__name__)

facts_router = APIRouter(tags=["facts"])


class FeedbackRequest(BaseModel):
    question: str
    correct_answer: str
    source: Optional[str] = None
    ttl_days: Optional[int] = None


class LookupRequest(BaseModel):
    question: str
    threshold: Optional[float] = None


class ForgetRequest(BaseModel):
    question: str


class FactOut(BaseModel):
    id: str
    question: str
    answer: str
    source: str
    ttl_days: Optional[int] = None
    created_at: str
    updated_at: str


class MatchOut(BaseModel):
    id: str
    question: str
    answer: str
    similarity: float
    source: str
    updated_at: str


@facts_router.post("/feedback")
async def feedback(
    request: FeedbackRequest,
    facts: FactStore = Depends(get_fact_store),
):
    """Store `correct_answer` as the answer to `question`."""
    fact_id = await facts.upsert(
        request.question,
        request.correct_answer,
        source=request.source,
        ttl_days=request.ttl_days,
    )
    return {"ok": True, "id": fact_id}


@facts_router.get("/facts")
async def list_facts(facts: FactStore = Depends(get_fact_store)):
    records = await facts.list_facts()
    items = [
        FactOut(
            id=r.id,
            question=r.question_norm,
            answer=r.answer,
            source=r.source,
            ttl_days=r.ttl_days,
            created_at=r.created_at.isoformat(),
            updated_at=r.updated_at.isoformat(),
        )
        for r in records
    ]
    return {"ok": True, "count": len(items), "items": items}


@facts_router.post("/facts/lookup")
async def lookup_fact(
    request: LookupRequest,
    facts: FactStore = Depends(get_fact_store),
):
    match = await facts.lookup(request.question, threshold=request.threshold)
    if match is None:
        return {"ok": True, "found": False}
    return {
        "ok": True,
        "found": True,
        "match": MatchOut(
            id=match.fact_id,
            question=match.question_norm,
            answer=match.answer,
            similarity=match.similarity,
            source=match.source,
            updated_at=match.updated_at.isoformat(),
        ),
    }


@facts_router.delete("/facts")
async def forget_fact(
    request: ForgetRequest,
    facts: FactStore = Depends(get_fact_store),
):
    deleted = await facts.forget(request.question)
    return {"ok": True, "deleted": deleted}

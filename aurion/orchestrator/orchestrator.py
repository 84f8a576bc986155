"""
Main answering pipeline.

Receive prompt → fact memory → web research → LLM → cleanup → history.

A fact memory hit short-circuits everything after it. When the memory is
unavailable (embedding backend or database down) the prompt still goes to the
LLM, and the reply carries meta.memory = "unavailable" so the client can show
a degraded-service hint.
"""

import logging
import time
from typing import AsyncGenerator, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .postprocess import ensure_complete, length_constraint, tidy
from .state import pull_recent_history, record_exchange, render_context
from ..core.config import get_settings
from ..core.errors import EmbeddingProviderError, StorageError
from ..services import ollama, web_search
from ..services.fact_store import FactStore

logger = logging.getLogger(__name__)


async def shortcut_reply(
    prompt: str,
    db: AsyncSession,
    facts: FactStore,
    model: str,
) -> tuple[Optional[dict], dict]:
    """
    Answer without the LLM when possible.

    Returns (result, memory_meta). `result` is {"reply", "meta"} or None;
    `memory_meta` is merged into whatever reply is eventually produced.
    """
    memory_meta: dict = {}
    try:
        match = await facts.lookup(prompt)
    except (EmbeddingProviderError, StorageError) as e:
        logger.warning("Fact memory unavailable, falling back to LLM: %s", e)
        match = None
        memory_meta = {"memory": "unavailable"}

    if match is not None:
        return {
            "reply": match.answer,
            "meta": {
                "mode": "fact",
                "source": match.source,
                "similarity": round(match.similarity, 4),
                "updated_at": match.updated_at.isoformat(),
                "model": model,
            },
        }, memory_meta

    found = await web_search.research(db, prompt)
    if found is not None:
        return {"reply": found["reply"], "meta": {**found["meta"], **memory_meta, "model": model}}, memory_meta

    return None, memory_meta


def build_prompt(prompt: str, context: str, length_instruction: str, lead: str) -> str:
    return f"{context}{lead}{length_instruction}\nQuestion: {prompt}"


async def handle_prompt(
    prompt: str,
    db: AsyncSession,
    facts: FactStore,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    style: str = "genz",
    model: Optional[str] = None,
    response_length: str = "medium",
) -> dict:
    """Non-streaming entry point. Returns {"reply", "meta"}."""
    start = time.monotonic()
    settings = get_settings()
    user_id = user_id or settings.user_id
    chosen = ollama.choose_model(model)

    # 1. Memory, then research
    shortcut, memory_meta = await shortcut_reply(prompt, db, facts, chosen)
    if shortcut is not None:
        await record_exchange(db, session_id, user_id, prompt, shortcut["reply"], style)
        return shortcut

    # 2. LLM with recent context
    lc = length_constraint(response_length)
    history = await pull_recent_history(db, session_id, settings.history_context_limit)
    final_prompt = build_prompt(
        prompt, render_context(history), lc.instruction, "Réponds clairement et sans détour."
    )
    system = settings.system_prompt

    raw = await ollama.generate(
        final_prompt, system, model=chosen,
        options=ollama.generation_options(chosen, lc.multiplier),
    )
    reply = await ensure_complete(raw, system, chosen)

    # 3. Persist
    await record_exchange(db, session_id, user_id, prompt, reply, style)

    logger.info(
        "Answered via LLM in %dms (session=%s, model=%s, %d chars)",
        int((time.monotonic() - start) * 1000), session_id, chosen, len(reply),
    )
    return {
        "reply": reply,
        "meta": {"mode": "llm", "model": chosen, "length": response_length, **memory_meta},
    }


async def prepare_stream(
    prompt: str,
    db: AsyncSession,
    facts: FactStore,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    style: str = "genz",
    model: Optional[str] = None,
    response_length: str = "medium",
) -> tuple[Optional[dict], dict]:
    """
    First half of the streaming path. Returns (shortcut, plan): a complete
    reply when memory/research answered, otherwise the arguments for
    `stream_reply`.
    """
    settings = get_settings()
    user_id = user_id or settings.user_id
    chosen = ollama.choose_model(model)

    shortcut, memory_meta = await shortcut_reply(prompt, db, facts, chosen)
    if shortcut is not None:
        await record_exchange(db, session_id, user_id, prompt, shortcut["reply"], style)
        return shortcut, {}

    lc = length_constraint(response_length)
    history = await pull_recent_history(db, session_id, settings.history_context_limit)
    plan = {
        "prompt": prompt,
        "final_prompt": build_prompt(
            prompt, render_context(history), lc.instruction, "Réponds brièvement et clairement."
        ),
        "system": settings.system_prompt,
        "model": chosen,
        "options": ollama.generation_options(chosen, lc.multiplier),
        "session_id": session_id,
        "user_id": user_id,
        "style": style,
        "memory_meta": memory_meta,
    }
    return None, plan


async def stream_reply(
    plan: dict,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[str, None]:
    """
    Relay generated text as it arrives, then store the cleaned-up reply.
    Runs after the request handler returned, so it opens its own DB session.
    """
    pieces: list[str] = []
    try:
        async for piece in ollama.generate_stream(
            plan["final_prompt"], plan["system"], model=plan["model"], options=plan["options"],
        ):
            pieces.append(piece)
            yield piece

        base = tidy("".join(pieces))
        reply = await ensure_complete(base, plan["system"], plan["model"])
        if reply != base and reply.startswith(base):
            yield reply[len(base):]
    except httpx.HTTPError as e:
        logger.error("Stream aborted (model=%s): %s", plan["model"], e)
        yield "\n[modèle indisponible]"
        return

    async with session_factory() as db:
        async with db.begin():
            await record_exchange(
                db, plan["session_id"], plan["user_id"], plan["prompt"], reply, plan["style"],
            )
    logger.info("Stream stored (session=%s, %d chars)", plan["session_id"], len(reply))

"""
Web research via the Tavily API, cached in the database for a few hours.
Direct HTTP call. Only used when TAVILY_API_KEY is set and the prompt asks
for current information.
"""

import logging
import re
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models.base import as_utc, utcnow
from ..models.search_cache import SearchCacheEntry

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"

_RESEARCH_HINTS = re.compile(
    r"(aujourd'hui|derni(ers|ères)|actualité|news|prix|coût|tarif|programme|calendrier"
    r"|horaire|score|mercato|bourse|loi|décret|20\d\d)",
    re.IGNORECASE,
)


def looks_like_research(text: str) -> bool:
    """True when the prompt asks for something time-sensitive."""
    return bool(_RESEARCH_HINTS.search(text or ""))


def cache_key(query: str) -> str:
    return f"tavily:{query.strip().lower()}"


async def cache_get(db: AsyncSession, key: str, ttl: timedelta) -> Optional[str]:
    """Cached answer for `key`, dropping it if older than `ttl`."""
    entry = await db.get(SearchCacheEntry, key)
    if entry is None:
        return None
    if utcnow() - as_utc(entry.created_at) > ttl:
        await db.delete(entry)
        await db.flush()
        return None
    return entry.answer


async def cache_set(
    db: AsyncSession,
    key: str,
    answer: str,
    ttl: Optional[timedelta] = None,
) -> None:
    """Store `answer` under `key`. With a `ttl`, entries older than it are pruned first."""
    if ttl is not None:
        result = await db.execute(
            delete(SearchCacheEntry)
            .where(SearchCacheEntry.created_at < utcnow() - ttl)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info("Pruned %d expired search cache entr(ies)", result.rowcount)
    entry = await db.get(SearchCacheEntry, key)
    if entry is None:
        db.add(SearchCacheEntry(key=key, answer=answer, created_at=utcnow()))
    else:
        entry.answer = answer
        entry.created_at = utcnow()
    await db.flush()


def format_results(data: dict) -> Optional[str]:
    """Summary line plus up to five numbered sources, or None when empty."""
    items = (data.get("results") or [])[:5]
    if not items:
        return None
    bullets = "\n".join(
        f"- {i}. {r.get('title') or 'Source'} — {r.get('url', '')}"
        for i, r in enumerate(items, start=1)
    )
    summary = data.get("answer") or "Voici les points clés trouvés :"
    return f"{summary}\n\nSources:\n{bullets}"


async def research(db: AsyncSession, query: str) -> Optional[dict]:
    """
    Answer `query` from the web. Returns {"reply", "meta"} or None when
    research does not apply (no key, prompt not time-sensitive).
    Network failures become a user-facing reply, never an exception.
    """
    settings = get_settings()
    if not settings.tavily_api_key or not looks_like_research(query):
        return None

    key = cache_key(query)
    ttl = timedelta(hours=settings.search_cache_ttl_hours)
    cached = await cache_get(db, key, ttl)
    if cached:
        return {"reply": cached, "meta": {"intent": "research", "ok": True, "provider": "tavily", "cached": True}}

    try:
        async with httpx.AsyncClient(timeout=15) as client:
            resp = await client.post(
                TAVILY_URL,
                json={
                    "api_key": settings.tavily_api_key,
                    "query": query,
                    "search_depth": "advanced",
                    "max_results": 5,
                    "include_answer": True,
                },
            )
            resp.raise_for_status()
            data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Tavily search failed: %s", e)
        return {"reply": "Recherche indisponible (réseau).", "meta": {"intent": "research", "ok": False}}

    out = format_results(data)
    if out is None:
        return {"reply": "Pas de résultats fiables trouvés.", "meta": {"intent": "research", "ok": False}}

    await cache_set(db, key, out, ttl)
    return {"reply": out, "meta": {"intent": "research", "ok": True, "provider": "tavily", "cached": False}}

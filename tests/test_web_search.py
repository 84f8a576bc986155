from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest

from aurion.models.base import utcnow
from aurion.models.search_cache import SearchCacheEntry
from aurion.services import web_search


@pytest.fixture
def tavily(monkeypatch):
    """Enable research and route Tavily calls to a mock transport."""
    settings = SimpleNamespace(tavily_api_key="tvly-test", search_cache_ttl_hours=6)
    monkeypatch.setattr(web_search, "get_settings", lambda: settings)

    requests = []
    state = {"payload": {"answer": "Le pain coûte 1,20 €.", "results": [
        {"title": "Boulangerie", "url": "https://example.org/pain"},
    ]}}

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if state["payload"] is None:
            raise httpx.ConnectError("offline", request=request)
        return httpx.Response(200, json=state["payload"])

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx, "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return SimpleNamespace(requests=requests, state=state)


class TestLooksLikeResearch:
    @pytest.mark.parametrize("text", [
        "Quel est le prix du pain aujourd'hui ?",
        "Les dernières news du mercato",
        "Calendrier 2025 des matchs",
    ])
    def test_research_prompts(self, text):
        assert web_search.looks_like_research(text)

    @pytest.mark.parametrize("text", ["Qui es-tu ?", "Raconte une blague", ""])
    def test_plain_prompts(self, text):
        assert not web_search.looks_like_research(text)


class TestFormatResults:
    def test_summary_and_sources(self):
        out = web_search.format_results({
            "answer": "Résumé.",
            "results": [{"title": f"T{i}", "url": f"https://x/{i}"} for i in range(8)],
        })
        lines = out.splitlines()
        assert lines[0] == "Résumé."
        assert lines[2] == "Sources:"
        # At most five sources
        assert len(lines) == 3 + 5
        assert lines[3].startswith("- 1. T0")

    def test_no_results(self):
        assert web_search.format_results({"results": []}) is None
        assert web_search.format_results({}) is None

    def test_default_summary_and_title(self):
        out = web_search.format_results({"results": [{"url": "https://x"}]})
        assert out.startswith("Voici les points clés trouvés :")
        assert "Source" in out


class TestSearchCache:
    async def test_set_and_get(self, session_factory):
        async with session_factory() as db:
            await web_search.cache_set(db, "tavily:q", "réponse")
            assert await web_search.cache_get(db, "tavily:q", timedelta(hours=6)) == "réponse"

            await web_search.cache_set(db, "tavily:q", "nouvelle")
            assert await web_search.cache_get(db, "tavily:q", timedelta(hours=6)) == "nouvelle"

    async def test_expired_entry_is_dropped(self, session_factory):
        async with session_factory() as db:
            db.add(SearchCacheEntry(
                key="tavily:old", answer="périmé", created_at=utcnow() - timedelta(hours=7),
            ))
            await db.flush()

            assert await web_search.cache_get(db, "tavily:old", timedelta(hours=6)) is None
            assert await db.get(SearchCacheEntry, "tavily:old") is None

    async def test_set_prunes_other_aged_entries(self, session_factory):
        async with session_factory() as db:
            db.add(SearchCacheEntry(
                key="tavily:one-off", answer="périmé", created_at=utcnow() - timedelta(hours=7),
            ))
            db.add(SearchCacheEntry(
                key="tavily:recent", answer="frais", created_at=utcnow() - timedelta(hours=1),
            ))
            await db.commit()

        async with session_factory() as db:
            await web_search.cache_set(db, "tavily:new", "réponse", timedelta(hours=6))
            await db.commit()

        async with session_factory() as db:
            assert await db.get(SearchCacheEntry, "tavily:one-off") is None
            assert await db.get(SearchCacheEntry, "tavily:recent") is not None
            assert await db.get(SearchCacheEntry, "tavily:new") is not None

    def test_cache_key(self):
        assert web_search.cache_key("  Prix du PAIN ") == "tavily:prix du pain"


class TestResearch:
    async def test_disabled_without_key(self, session_factory, monkeypatch):
        monkeypatch.setattr(
            web_search, "get_settings",
            lambda: SimpleNamespace(tavily_api_key="", search_cache_ttl_hours=6),
        )
        async with session_factory() as db:
            assert await web_search.research(db, "prix du pain aujourd'hui") is None

    async def test_not_research_prompt(self, session_factory, tavily):
        async with session_factory() as db:
            assert await web_search.research(db, "Qui es-tu ?") is None
        assert tavily.requests == []

    async def test_fetch_then_cached(self, session_factory, tavily):
        async with session_factory() as db:
            first = await web_search.research(db, "Prix du pain aujourd'hui")
            second = await web_search.research(db, "prix du pain aujourd'hui ")

        assert first["meta"]["cached"] is False
        assert first["reply"].startswith("Le pain coûte 1,20 €.")
        assert "https://example.org/pain" in first["reply"]
        assert second["meta"]["cached"] is True
        assert second["reply"] == first["reply"]
        assert len(tavily.requests) == 1

    async def test_fetch_prunes_aged_cache(self, session_factory, tavily):
        async with session_factory() as db:
            db.add(SearchCacheEntry(
                key="tavily:vieux", answer="périmé", created_at=utcnow() - timedelta(hours=8),
            ))
            await db.flush()

            await web_search.research(db, "Prix du pain aujourd'hui")

            assert await db.get(SearchCacheEntry, "tavily:vieux") is None

    async def test_network_failure_is_a_reply(self, session_factory, tavily):
        tavily.state["payload"] = None
        async with session_factory() as db:
            result = await web_search.research(db, "Prix du pain aujourd'hui")

        assert result["reply"] == "Recherche indisponible (réseau)."
        assert result["meta"]["ok"] is False

    async def test_no_results(self, session_factory, tavily):
        tavily.state["payload"] = {"results": []}
        async with session_factory() as db:
            result = await web_search.research(db, "Prix du pain aujourd'hui")

        assert result["reply"] == "Pas de résultats fiables trouvés."

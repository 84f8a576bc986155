"""
Ollama client.

Features:
  - Retry with exponential backoff + jitter (handles 429, 500, 502, 503, 504)
  - Streaming support (NDJSON async generator)
  - Embeddings for the fact memory
  - Reusable client (connection pooling)
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, AsyncGenerator, Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            base_url=get_settings().ollama_host,
            timeout=httpx.Timeout(connect=10, read=300, write=30, pool=10),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Retry logic ──────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 2
BASE_DELAY = 0.5
MAX_DELAY = 8.0


async def _retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Execute request with exponential backoff + jitter."""
    last_exc = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            resp = await client.request(method, url, **kwargs)

            if resp.status_code not in RETRYABLE_STATUS:
                if resp.status_code >= 400:
                    logger.error("Ollama error %d on %s: %s", resp.status_code, url, resp.text[:500])
                resp.raise_for_status()
                return resp

            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.5))
            logger.warning(
                "Ollama %d (attempt %d/%d), retrying in %.1fs",
                resp.status_code, attempt + 1, MAX_RETRIES + 1, delay,
            )
            last_exc = httpx.HTTPStatusError(
                f"{resp.status_code}", request=resp.request, response=resp
            )

        except httpx.HTTPStatusError:
            raise  # Non-retryable HTTP errors
        except (httpx.TimeoutException, httpx.TransportError) as e:
            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.5))
            logger.warning(
                "Ollama unreachable (attempt %d/%d): %s, retrying in %.1fs",
                attempt + 1, MAX_RETRIES + 1, e, delay,
            )
            last_exc = e

        if attempt < MAX_RETRIES:
            await asyncio.sleep(delay)

    raise last_exc or RuntimeError("Ollama request failed after retries")


# ── Model choice & options ───────────────────────────────────────────

def choose_model(hint: Optional[str] = None) -> str:
    """Resolve a model alias (primary/secondary/gemma/phi) to a model name."""
    models = get_settings().models
    if hint and hint in models:
        return models[hint]
    return models["primary"]


def generation_options(model: str, length_mult: float = 1.0) -> dict[str, Any]:
    """Ollama sampling options, scaled by the requested answer length."""
    settings = get_settings()
    mult = max(0.5, min(2.0, length_mult))
    options: dict[str, Any] = {
        "num_ctx": settings.llm_num_ctx,
        "num_predict": round(settings.llm_num_predict * mult),
        "temperature": settings.llm_temperature,
        "top_p": 0.9,
        "top_k": 50,
        "repeat_penalty": 1.1,
        "repeat_last_n": 256,
    }
    # Phi models ramble when hot
    if "phi" in model.lower():
        options["temperature"] = min(options["temperature"], 0.35)
    return options


# ── Generation ───────────────────────────────────────────────────────

async def generate(
    prompt: str,
    system: str = "",
    model: Optional[str] = None,
    options: Optional[dict] = None,
) -> str:
    """Non-streaming completion. Returns the generated text."""
    payload = {
        "model": model or choose_model(),
        "prompt": prompt,
        "system": system,
        "stream": False,
        "options": dict(options or {}),
    }

    start = time.monotonic()
    resp = await _retry_request(_get_client(), "POST", "/api/generate", json=payload)
    data = resp.json()
    logger.info(
        "Ollama generate: %dms | prompt=%d eval=%d tokens | model=%s",
        int((time.monotonic() - start) * 1000),
        data.get("prompt_eval_count", 0),
        data.get("eval_count", 0),
        payload["model"],
    )
    return data.get("response") or ""


async def generate_stream(
    prompt: str,
    system: str = "",
    model: Optional[str] = None,
    options: Optional[dict] = None,
) -> AsyncGenerator[str, None]:
    """
    Streaming completion. Ollama answers with NDJSON lines; yields the
    `response` piece of each line until `done`.
    """
    payload = {
        "model": model or choose_model(),
        "prompt": prompt,
        "system": system,
        "stream": True,
        "options": dict(options or {}),
    }

    logger.info("Ollama stream start: model=%s", payload["model"])
    total = 0
    async with _get_client().stream("POST", "/api/generate", json=payload) as resp:
        if resp.status_code >= 400:
            body = (await resp.aread()).decode("utf-8", errors="replace")[:500]
            logger.error("Ollama stream error %d: %s", resp.status_code, body)
            resp.raise_for_status()

        async for line in resp.aiter_lines():
            if not line.strip():
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                continue

            piece = chunk.get("response") or ""
            if piece:
                total += len(piece)
                yield piece
            if chunk.get("done"):
                break

    logger.info("Ollama stream done: model=%s content=%d chars", payload["model"], total)


# ── Embeddings ───────────────────────────────────────────────────────

async def embed(text: str, model: Optional[str] = None) -> Any:
    """Raw embedding call. Returns whatever Ollama put under `embedding`."""
    payload = {
        "model": model or get_settings().embed_model,
        "prompt": text,
    }
    resp = await _retry_request(_get_client(), "POST", "/api/embeddings", json=payload)
    data = resp.json()
    if not isinstance(data, dict):
        logger.warning("Ollama embeddings returned %s instead of an object", type(data).__name__)
        return None
    return data.get("embedding")

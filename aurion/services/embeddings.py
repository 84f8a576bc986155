"""
Embedding providers for the fact memory.

Anything with `async embed(text) -> list[float]` works. Providers must raise
EmbeddingProviderError on failure and never return an empty or partial vector.
"""

import logging
import math
from typing import Any, Optional, Protocol

import httpx

from . import ollama
from ..core.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


def validate_vector(raw: Any) -> list[float]:
    """Coerce provider output to a list of finite floats or raise."""
    if not isinstance(raw, (list, tuple)) or not raw:
        raise EmbeddingProviderError("Embedding provider returned no vector")

    vector = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingProviderError(f"Embedding contains a non-numeric value: {value!r}")
        value = float(value)
        if not math.isfinite(value):
            raise EmbeddingProviderError("Embedding contains NaN or infinity")
        vector.append(value)
    return vector


class OllamaEmbeddingProvider:
    """Embeds text with an Ollama embedding model (nomic-embed-text by default)."""

    def __init__(self, model: Optional[str] = None):
        self.model = model

    async def embed(self, text: str) -> list[float]:
        try:
            raw = await ollama.embed(text, model=self.model)
        except (httpx.HTTPError, ValueError) as e:
            # ValueError covers a non-JSON body
            logger.warning("Embedding request failed: %s", e)
            raise EmbeddingProviderError(f"Embedding provider unavailable: {e}") from e
        return validate_vector(raw)

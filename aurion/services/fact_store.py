"""
Fact memory: durable, similarity-searchable question → answer corrections.

Consulted before every language-model call. A fact is keyed by its normalized
question; lookups embed the incoming question and return the closest stored
fact when its cosine similarity reaches the threshold.

Write ordering:
  1. Embeddings are computed first, outside the lock (network call).
  2. The lock is taken for the database transaction only.
  3. Fact row + embedding row are written in the same transaction, so a reader
     never sees one without the other.
Lookup sweeps expired facts and reads candidates inside one locked
transaction, so a sweep cannot race a concurrent refresh of the same fact.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .embeddings import EmbeddingProvider, validate_vector
from .normalize import normalize_question
from ..core.errors import StorageError, ValidationError
from ..models.base import as_utc, utcnow
from ..models.memory import Fact, FactEmbedding

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "user-correction"
DEFAULT_THRESHOLD = 0.85


@dataclass(frozen=True)
class FactMatch:
    """A lookup hit."""
    fact_id: str
    question_norm: str
    answer: str
    similarity: float
    source: str
    updated_at: datetime


@dataclass(frozen=True)
class FactRecord:
    id: str
    question_norm: str
    answer: str
    source: str
    ttl_days: Optional[int]
    created_at: datetime
    updated_at: datetime


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    (a·b) / (|a| * |b|). Zero when either vector has no magnitude or the
    lengths differ (e.g. the embedding model changed).
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a)
    norm_b = sum(y * y for y in b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    # sqrt of the product keeps sim(v, v) at exactly 1.0
    sim = dot / math.sqrt(norm_a * norm_b)
    return max(-1.0, min(1.0, sim))


def is_expired(fact: Fact, now: datetime) -> bool:
    if fact.ttl_days is None:
        return False
    return now > as_utc(fact.updated_at) + timedelta(days=fact.ttl_days)


def _check_threshold(threshold: float) -> float:
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ValidationError("threshold must be a number")
    if not 0.0 <= threshold <= 1.0:
        raise ValidationError("threshold must be between 0 and 1")
    return float(threshold)


class FactStore:
    """
    Semantic cache of user corrections.

    Args:
        session_factory: async_sessionmaker bound to the memory database.
        embedder: provider used for both stored and query embeddings.
        similarity_threshold: default Lookup threshold, in [0, 1].
        default_source: provenance tag when Upsert gets none.
        clock: returns the current UTC time (overridable in tests).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider,
        similarity_threshold: float = DEFAULT_THRESHOLD,
        default_source: str = DEFAULT_SOURCE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._embedder = embedder
        self.similarity_threshold = _check_threshold(similarity_threshold)
        self.default_source = default_source
        self._clock = clock
        self._write_lock = asyncio.Lock()

    async def _embed(self, text: str) -> list[float]:
        # Providers raise EmbeddingProviderError; re-validate anyway so a
        # sloppy provider cannot store a broken vector.
        return validate_vector(await self._embedder.embed(text))

    # ── Upsert ───────────────────────────────────────────────────────

    async def upsert(
        self,
        question: str,
        answer: str,
        source: Optional[str] = None,
        ttl_days: Optional[int] = None,
    ) -> str:
        """Create or refresh the fact for `question`. Returns the fact id."""
        question = (question or "").strip()
        answer = (answer or "").strip()
        if not question:
            raise ValidationError("question is required")
        if not answer:
            raise ValidationError("answer is required")
        if ttl_days is not None and (
            isinstance(ttl_days, bool) or not isinstance(ttl_days, int) or ttl_days <= 0
        ):
            raise ValidationError("ttl_days must be a positive integer")

        question_norm = normalize_question(question)
        if not question_norm:
            raise ValidationError("question has no content after normalization")

        vector = await self._embed(question_norm)
        source = (source or "").strip() or self.default_source

        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        fact_id, created = await self._write_fact(
                            session, question_norm, answer, source, ttl_days, vector
                        )
            except SQLAlchemyError as e:
                logger.error("Fact upsert failed for %r: %s", question_norm, e)
                raise StorageError(f"Could not save fact: {e}") from e

        logger.info(
            "Fact %s: %s (%r, source=%s, ttl=%s)",
            "created" if created else "refreshed", fact_id, question_norm[:60], source, ttl_days,
        )
        return fact_id

    async def _write_fact(
        self,
        session: AsyncSession,
        question_norm: str,
        answer: str,
        source: str,
        ttl_days: Optional[int],
        vector: list[float],
    ) -> tuple[str, bool]:
        now = self._clock()
        # An expired fact is gone: re-teaching it creates a new one
        await self._sweep(session)
        result = await session.execute(
            select(Fact).where(Fact.question_norm == question_norm)
        )
        fact = result.scalar_one_or_none()

        if fact is None:
            fact = Fact(
                question_norm=question_norm,
                answer=answer,
                source=source,
                ttl_days=ttl_days,
                created_at=now,
                updated_at=now,
            )
            session.add(fact)
            await session.flush()
            session.add(FactEmbedding(fact_id=fact.id, dim=len(vector), vector=vector))
            return fact.id, True

        fact.answer = answer
        fact.source = source
        fact.ttl_days = ttl_days
        fact.updated_at = now

        emb = await session.get(FactEmbedding, fact.id)
        if emb is None:
            session.add(FactEmbedding(fact_id=fact.id, dim=len(vector), vector=vector))
        else:
            emb.vector = vector
            emb.dim = len(vector)
        await session.flush()
        return fact.id, False

    # ── Lookup ───────────────────────────────────────────────────────

    async def lookup(
        self,
        question: str,
        threshold: Optional[float] = None,
    ) -> Optional[FactMatch]:
        """
        Closest live fact for `question`, or None when nothing reaches the
        threshold. Provider and storage failures raise instead of returning
        None, so callers can tell "no memory" from "memory unavailable".
        """
        threshold = self.similarity_threshold if threshold is None else _check_threshold(threshold)
        question_norm = normalize_question(question)
        if not question_norm:
            return None

        query = await self._embed(question_norm)

        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._sweep(session)
                        result = await session.execute(
                            select(Fact, FactEmbedding.vector).join(
                                FactEmbedding, FactEmbedding.fact_id == Fact.id
                            )
                        )
                        rows = result.all()
            except SQLAlchemyError as e:
                logger.error("Fact lookup failed: %s", e)
                raise StorageError(f"Could not read facts: {e}") from e

        best: Optional[Fact] = None
        best_sim = -1.0
        for fact, vector in rows:
            sim = cosine_similarity(query, vector)
            if sim > best_sim:
                best, best_sim = fact, sim

        if best is None or best_sim < threshold:
            logger.debug(
                "Fact miss for %r (best=%.3f, threshold=%.2f, candidates=%d)",
                question_norm[:60], best_sim, threshold, len(rows),
            )
            return None

        logger.info("Fact hit %s for %r (sim=%.3f)", best.id, question_norm[:60], best_sim)
        return FactMatch(
            fact_id=best.id,
            question_norm=best.question_norm,
            answer=best.answer,
            similarity=best_sim,
            source=best.source,
            updated_at=as_utc(best.updated_at),
        )

    # ── TTL sweep ────────────────────────────────────────────────────

    async def sweep(self) -> int:
        """Delete every expired fact now. Returns how many were removed."""
        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await self._sweep(session)
            except SQLAlchemyError as e:
                raise StorageError(f"Could not sweep facts: {e}") from e

    async def _sweep(self, session: AsyncSession) -> int:
        now = self._clock()
        result = await session.execute(select(Fact).where(Fact.ttl_days.is_not(None)))
        expired = [f.id for f in result.scalars().all() if is_expired(f, now)]
        if not expired:
            return 0

        await session.execute(delete(FactEmbedding).where(FactEmbedding.fact_id.in_(expired)))
        await session.execute(delete(Fact).where(Fact.id.in_(expired)))
        logger.info("Swept %d expired fact(s)", len(expired))
        return len(expired)

    # ── Forget ───────────────────────────────────────────────────────

    async def forget(self, question: str) -> bool:
        """Delete the fact for `question`. True if one existed."""
        question_norm = normalize_question(question)
        if not question_norm:
            return False

        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            select(Fact.id).where(Fact.question_norm == question_norm)
                        )
                        fact_id = result.scalar_one_or_none()
                        if fact_id is None:
                            return False
                        await session.execute(
                            delete(FactEmbedding).where(FactEmbedding.fact_id == fact_id)
                        )
                        await session.execute(delete(Fact).where(Fact.id == fact_id))
            except SQLAlchemyError as e:
                raise StorageError(f"Could not delete fact: {e}") from e

        logger.info("Fact forgotten: %s (%r)", fact_id, question_norm[:60])
        return True

    # ── Introspection ────────────────────────────────────────────────

    async def list_facts(self) -> list[FactRecord]:
        """Live facts, most recently updated first. Expired rows wait for the next sweep."""
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Fact).order_by(Fact.updated_at.desc())
                )
                facts = result.scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list facts: {e}") from e

        return [
            FactRecord(
                id=f.id,
                question_norm=f.question_norm,
                answer=f.answer,
                source=f.source,
                ttl_days=f.ttl_days,
                created_at=as_utc(f.created_at),
                updated_at=as_utc(f.updated_at),
            )
            for f in facts
            if not is_expired(f, now)
        ]

    async def count(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(func.count()).select_from(Fact))
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not count facts: {e}") from e

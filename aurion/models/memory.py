"""
Fact memory persistence.

A Fact is a user-asserted question → answer correction keyed by its normalized
question. Each live Fact owns exactly one FactEmbedding computed from that
normalized question; deleting the Fact cascades to its embedding.
"""

from typing import Optional

from sqlalchemy import String, Text, Integer, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import TimestampedBase, new_uuid
from ..core.database import Base


class Fact(TimestampedBase):
    __tablename__ = "memory_facts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_uuid)
    question_norm: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default="user-correction")
    ttl_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    embedding: Mapped["FactEmbedding"] = relationship(
        back_populates="fact",
        cascade="all",
        passive_deletes=True,
        uselist=False,
    )


class FactEmbedding(Base):
    __tablename__ = "memory_embeddings"

    fact_id: Mapped[str] = mapped_column(
        String, ForeignKey("memory_facts.id", ondelete="CASCADE"), primary_key=True
    )
    dim: Mapped[int] = mapped_column(Integer, nullable=False)
    vector: Mapped[list] = mapped_column(JSON, nullable=False)

    fact: Mapped["Fact"] = relationship(back_populates="embedding")

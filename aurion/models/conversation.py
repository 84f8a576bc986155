"""
Sessions and message history. Column layout matches the tables the proxy has
always written (`sessions`, `history`), so an existing aurion.db keeps working.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import utcnow
from ..core.database import Base


class ChatSession(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class HistoryMessage(Base):
    __tablename__ = "history"
    __table_args__ = (
        CheckConstraint("role IN ('user','assistant','system')", name="ck_history_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False)  # user, assistant, system
    content: Mapped[str] = mapped_column(Text, nullable=False)
    style: Mapped[Optional[str]] = mapped_column(String, nullable=True, default="genz")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

"""
Web-research cache. One row per normalized query, expired by age on read.
"""

from datetime import datetime

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import utcnow
from ..core.database import Base


class SearchCacheEntry(Base):
    __tablename__ = "search_cache"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

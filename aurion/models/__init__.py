"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampedBase
from .memory import Fact, FactEmbedding
from .conversation import ChatSession, HistoryMessage
from .search_cache import SearchCacheEntry

__all__ = [
    "TimestampedBase",
    "Fact", "FactEmbedding",
    "ChatSession", "HistoryMessage",
    "SearchCacheEntry",
]

"""
Fact memory error taxonomy.

ValidationError       : empty/invalid input, nothing persisted. HTTP 400.
EmbeddingProviderError: embedding backend unreachable or malformed output. HTTP 503.
StorageError          : persistence failure, transaction rolled back. HTTP 503.
"""


class FactStoreError(Exception):
    """Base class for fact memory failures."""


class ValidationError(FactStoreError, ValueError):
    """Required input missing or out of range."""


class EmbeddingProviderError(FactStoreError):
    """The embedding provider failed or returned something that is not a vector."""


class StorageError(FactStoreError):
    """The underlying database rejected or failed a transaction."""

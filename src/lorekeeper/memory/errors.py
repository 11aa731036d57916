"""
Exception types for the memory engine.

None of these are meant to abort a turn. The engine catches them at its
boundary and degrades (no vector, empty memory, placeholder context).
"""


class LorekeeperMemoryError(Exception):
    """Base class for memory engine errors."""


class EmbeddingError(LorekeeperMemoryError):
    """Embedding provider failed or timed out."""


class VectorIndexCorruptError(LorekeeperMemoryError):
    """Persisted vector index exists but cannot be decoded."""


class MemoryStoreError(LorekeeperMemoryError):
    """Durable store could not be read or written."""

"""knowledge_rag.common.exceptions

Error taxonomy for the knowledge-base indexing and retrieval core.

Every error raised deliberately by the package derives from
:class:`KnowledgeBaseError`, so callers can catch the whole family at an
application boundary while still distinguishing fatal configuration problems
from per-chunk or per-document failures.

Classes
-------
KnowledgeBaseError
    Root of the package's exception hierarchy.
ChunkingConfigError
    Invalid chunk size / overlap configuration.
EmbeddingGenerationError
    Embedding call failed permanently or after exhausting retries.
EmbeddingDimensionError
    Embeddings of different dimensionality were mixed in one store.
StorageError
    Persistence failure in the knowledge-base store.
RerankerUnavailable
    The reranker channel could not produce usable scores.
DocumentLoadError
    A source document could not be read.
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""


class ChunkingConfigError(KnowledgeBaseError, ValueError):
    """Raised when ``chunk_size`` / ``overlap_size`` are inconsistent.

    This is a configuration error: it is raised when a
    :class:`~knowledge_rag.retrieval.text_splitter.TextChunker` is constructed,
    before any document is processed.
    """


class EmbeddingGenerationError(KnowledgeBaseError):
    """Raised when an embedding cannot be produced.

    Parameters
    ----------
    message : str
        Human-readable description.
    attempts : int, optional
        Number of attempts made before giving up.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class EmbeddingDimensionError(KnowledgeBaseError):
    """Raised when a vector's dimensionality differs from the store's."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: store holds {expected}-d vectors, got {actual}-d. "
            "Re-index the knowledge base after changing the embedding model."
        )
        self.expected = expected
        self.actual = actual


class StorageError(KnowledgeBaseError):
    """Raised when the knowledge-base store fails to read or write."""


class RerankerUnavailable(KnowledgeBaseError):
    """Raised when the reranker call fails or yields no usable scores."""


class DocumentLoadError(KnowledgeBaseError):
    """Raised when a document cannot be loaded from its source path.

    Parameters
    ----------
    path : str
        Path that failed to load.
    reason : str
        Short description of the failure.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to load document {path!r}: {reason}")
        self.path = path
        self.reason = reason


__all__ = [
    "KnowledgeBaseError",
    "ChunkingConfigError",
    "EmbeddingGenerationError",
    "EmbeddingDimensionError",
    "StorageError",
    "RerankerUnavailable",
    "DocumentLoadError",
]

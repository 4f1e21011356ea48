"""
Common building blocks shared across the knowledge-base stack.

This package provides small, widely-used primitives (document and chunk
schemas, the exception taxonomy, token counting) intended to be imported by
multiple layers of the system.

Classes
-------
Document
    Indexed document record.
DocumentChunk
    Persisted chunk with its embedding.
RetrievedChunk
    Search result carried into filtering and prompt assembly.
KnowledgeBaseError
    Root of the exception hierarchy.

Attributes
----------
DocId : TypeAlias
    Type alias for document identifiers.
ChunkId : TypeAlias
    Type alias for chunk identifiers.

See Also
--------
knowledge_rag.common.schemas
    Dataclass definitions.
knowledge_rag.common.exceptions
    Error taxonomy.
knowledge_rag.common.tokenisation
    Token counters used for chunk sizing.
"""
from __future__ import annotations
from typing import TypeAlias

from .exceptions import (
    ChunkingConfigError,
    DocumentLoadError,
    EmbeddingDimensionError,
    EmbeddingGenerationError,
    KnowledgeBaseError,
    RerankerUnavailable,
    StorageError,
)
from .schemas import (
    Document,
    DocumentChunk,
    IndexingResult,
    IndexingStatus,
    KnowledgeBaseStatistics,
    LoadedDocument,
    RetrievedChunk,
    SearchResult,
    TextChunk,
)

DocId: TypeAlias = str
ChunkId: TypeAlias = str

__all__ = [
    "Document",
    "DocumentChunk",
    "IndexingResult",
    "IndexingStatus",
    "KnowledgeBaseStatistics",
    "LoadedDocument",
    "RetrievedChunk",
    "SearchResult",
    "TextChunk",
    "KnowledgeBaseError",
    "ChunkingConfigError",
    "DocumentLoadError",
    "EmbeddingDimensionError",
    "EmbeddingGenerationError",
    "RerankerUnavailable",
    "StorageError",
    "DocId",
    "ChunkId",
]

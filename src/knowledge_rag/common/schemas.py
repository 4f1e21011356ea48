"""knowledge_rag.common.schemas

Core data schemas shared across the indexing and query pipelines.

These lightweight dataclasses describe the canonical shapes for loaded source
documents, persisted documents and chunks, and the derived search results that
flow from the store through relevance filtering into prompt assembly.

Classes
-------
LoadedDocument
    Raw document as produced by a document loader.
Document
    Persisted, indexed document record keyed by its file path.
TextChunk
    Offset-addressed slice of a document produced by the chunker.
DocumentChunk
    Persisted chunk with its normalised embedding.
SearchResult
    Scored chunk returned by similarity search.
RetrievedChunk
    Search result carried into relevance filtering and prompt assembly.
KnowledgeBaseStatistics
    Document and chunk counts for a store.
IndexingStatus
    Outcome classification for a single document.
IndexingResult
    Structured outcome of indexing one document.

Functions
---------
normalize_file_path
    Canonicalise a file path for use as a document identity key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_file_path(path: str) -> str:
    """Canonicalise a file path so it can be used as a natural key.

    Backslashes become forward slashes, runs of slashes collapse to one, and
    leading/trailing slashes are stripped.

    Parameters
    ----------
    path : str
        Raw path as supplied by a loader or caller.

    Returns
    -------
    str
        Normalised path.
    """
    p = str(path).replace("\\", "/")
    p = re.sub(r"/{2,}", "/", p)
    return p.strip("/")


@dataclass(frozen=True)
class LoadedDocument:
    """A document read from a source, before indexing.

    Attributes
    ----------
    file_path : str
        Identity path of the document (relative to the loader's base directory
        when loaded from a directory).
    title : str
        Human-readable title.
    content : str
        Full text content.
    """

    file_path: str
    title: str
    content: str


@dataclass
class Document:
    """An indexed document record.

    Attributes
    ----------
    file_path : str
        Unique identity key of the document.
    title : str
        Document title.
    content : str
        Full text at the time of indexing.
    id : str
        Document identifier. Defaults to a random UUID4 string.
    indexed_at : datetime
        Time of the most recent successful indexing.
    chunk_count : int
        Number of chunks persisted for the document.
    """

    file_path: str
    title: str
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    indexed_at: datetime = field(default_factory=_utcnow)
    chunk_count: int = 0


@dataclass(frozen=True)
class TextChunk:
    """A contiguous slice of a document's text.

    Attributes
    ----------
    id : str
        Chunk identifier, ``"{document_id}-chunk-{chunk_index}"``.
    document_id : str
        Identifier of the owning document.
    chunk_index : int
        Zero-based position of the chunk within the document.
    content : str
        Chunk text.
    start_offset : int
        Character offset of the first character in the source content.
    end_offset : int
        Character offset one past the last character in the source content.
    token_count : int
        Number of tokens covered by the chunk.
    """

    id: str
    document_id: str
    chunk_index: int
    content: str
    start_offset: int
    end_offset: int
    token_count: int


@dataclass
class DocumentChunk:
    """A persisted chunk together with its embedding.

    Attributes
    ----------
    id : str
        Chunk identifier.
    document_id : str
        Identifier of the owning :class:`Document`.
    chunk_index : int
        Zero-based position within the document.
    content : str
        Chunk text.
    start_offset : int
        Character start offset in the document content.
    end_offset : int
        Character end offset in the document content.
    token_count : int
        Number of tokens covered by the chunk.
    embedding : list[float]
        L2-normalised embedding vector.
    created_at : datetime
        Creation timestamp.
    """

    id: str
    document_id: str
    chunk_index: int
    content: str
    start_offset: int
    end_offset: int
    token_count: int
    embedding: list[float]
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_text_chunk(cls, chunk: TextChunk, embedding: list[float]) -> "DocumentChunk":
        """Attach an embedding to a :class:`TextChunk`."""
        return cls(
            id=chunk.id,
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            start_offset=chunk.start_offset,
            end_offset=chunk.end_offset,
            token_count=chunk.token_count,
            embedding=list(embedding),
        )

    def with_document_id(self, document_id: str) -> "DocumentChunk":
        """Return a copy re-keyed to ``document_id``."""
        return replace(
            self,
            document_id=document_id,
            id=f"{document_id}-chunk-{self.chunk_index}",
        )


@dataclass(frozen=True)
class SearchResult:
    """A chunk scored against a query.

    Attributes
    ----------
    chunk_id : str
        Identifier of the matching chunk.
    document_id : str
        Identifier of the owning document.
    content : str
        Chunk text.
    similarity : float
        Similarity score in ``[0, 1]``.
    chunk_index : int
        Position of the chunk within its document.
    document_title : str or None
        Title of the owning document, when known.
    document_file_path : str or None
        Path of the owning document, when known.
    """

    chunk_id: str
    document_id: str
    content: str
    similarity: float
    chunk_index: int
    document_title: str | None = None
    document_file_path: str | None = None


@dataclass(frozen=True)
class RetrievedChunk:
    """A search result carried into filtering and prompt assembly.

    ``rerank_score`` is populated only once a reranker has judged the chunk.
    """

    chunk_id: str
    document_id: str
    content: str
    similarity: float
    chunk_index: int
    document_title: str | None = None
    document_file_path: str | None = None
    rerank_score: float | None = None

    @classmethod
    def from_search_result(cls, result: SearchResult) -> "RetrievedChunk":
        return cls(
            chunk_id=result.chunk_id,
            document_id=result.document_id,
            content=result.content,
            similarity=result.similarity,
            chunk_index=result.chunk_index,
            document_title=result.document_title,
            document_file_path=result.document_file_path,
        )

    def with_rerank_score(self, score: float) -> "RetrievedChunk":
        return replace(self, rerank_score=score)


@dataclass(frozen=True)
class KnowledgeBaseStatistics:
    documents_count: int
    chunks_count: int


class IndexingStatus(str, Enum):
    """Outcome classification for a single indexed document."""

    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class IndexingResult:
    """Structured outcome of indexing a single document.

    Attributes
    ----------
    document_id : str or None
        Identifier of the document, when one was assigned.
    file_path : str
        Path of the document.
    chunks_count : int
        Number of chunks persisted.
    success : bool
        Whether the document was written to the store.
    error : str or None
        Error description for failed or degraded indexing.
    errors_count : int
        Number of chunks that failed embedding.
    """

    document_id: str | None
    file_path: str
    chunks_count: int
    success: bool
    error: str | None = None
    errors_count: int = 0

    @property
    def status(self) -> IndexingStatus:
        if not self.success:
            return IndexingStatus.FAILED
        if self.errors_count > 0:
            return IndexingStatus.DEGRADED
        return IndexingStatus.SUCCEEDED


__all__ = [
    "normalize_file_path",
    "LoadedDocument",
    "Document",
    "TextChunk",
    "DocumentChunk",
    "SearchResult",
    "RetrievedChunk",
    "KnowledgeBaseStatistics",
    "IndexingStatus",
    "IndexingResult",
]

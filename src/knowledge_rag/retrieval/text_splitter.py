"""knowledge_rag.retrieval.text_splitter

Text chunking for the indexing pipeline.

This module converts a document's raw text into an ordered sequence of
overlapping, token-bounded :class:`~knowledge_rag.common.schemas.TextChunk`
objects. The window is measured in tokens of a pluggable
:class:`~knowledge_rag.common.tokenisation.TokenCounter` and every chunk keeps
the character offsets of its span in the source text so answers can later be
traced back to it.

Classes
-------
TextChunker
    Sliding-window chunker over a token stream.

Functions
---------
get_chunks_from_text
    Chunk a single text with an explicit token counter.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from knowledge_rag.common.exceptions import ChunkingConfigError
from knowledge_rag.common.schemas import TextChunk
from knowledge_rag.common.tokenisation import HeuristicTokenCounter, TokenCounter

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 800
DEFAULT_OVERLAP = 100
MAX_CHUNKS_PER_DOCUMENT = 10_000


class TextChunker:
    """Split text into overlapping windows of at most ``chunk_size`` tokens.

    Each window covers ``[cursor, cursor + chunk_size)`` in token positions;
    the cursor then advances by ``chunk_size - overlap_size``. Consecutive
    chunks therefore share exactly ``overlap_size`` tokens, except where the
    final chunk is shorter than a full window.

    Parameters
    ----------
    chunk_size : int, optional
        Maximum number of tokens per chunk. Defaults to ``800``.
    overlap_size : int, optional
        Number of tokens shared by consecutive chunks. Defaults to ``100``.
    token_counter : TokenCounter or None, optional
        Token counter defining the token stream. Defaults to a
        :class:`~knowledge_rag.common.tokenisation.HeuristicTokenCounter`.
    max_chunks : int, optional
        Upper bound on chunks emitted for a single document.

    Raises
    ------
    ChunkingConfigError
        If ``chunk_size <= 0`` or ``overlap_size`` is outside ``[0, chunk_size)``.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap_size: int = DEFAULT_OVERLAP,
        *,
        token_counter: TokenCounter | None = None,
        max_chunks: int = MAX_CHUNKS_PER_DOCUMENT,
    ) -> None:
        try:
            chunk_size = int(chunk_size)
            overlap_size = int(overlap_size)
        except (TypeError, ValueError) as e:
            raise ChunkingConfigError(
                f"chunk_size and overlap_size must be integers, got {chunk_size!r} / {overlap_size!r}"
            ) from e

        if chunk_size <= 0:
            raise ChunkingConfigError(f"chunk_size must be positive, got {chunk_size}")
        if overlap_size < 0:
            raise ChunkingConfigError(f"overlap_size must be non-negative, got {overlap_size}")
        if overlap_size >= chunk_size:
            raise ChunkingConfigError(
                f"overlap_size ({overlap_size}) must be smaller than chunk_size ({chunk_size})"
            )

        self.chunk_size = chunk_size
        self.overlap_size = overlap_size
        self.token_counter = token_counter or HeuristicTokenCounter()
        self.max_chunks = int(max_chunks)

    @property
    def stride(self) -> int:
        """Number of tokens the window advances between chunks."""
        return self.chunk_size - self.overlap_size

    @classmethod
    def from_config_dict(
        cls,
        config: Mapping[str, Any] | None,
        token_counter: TokenCounter | None = None,
    ) -> "TextChunker":
        """Create a chunker from a ``chunking`` configuration mapping.

        Parameters
        ----------
        config : Mapping[str, Any] or None
            Mapping with optional ``chunk_size``, ``overlap_size`` (or
            ``overlap``) and ``max_chunks`` keys.
        token_counter : TokenCounter or None, optional
            Token counter to size chunks with.

        Returns
        -------
        TextChunker
            Configured chunker.
        """
        cfg = dict(config or {})
        return cls(
            chunk_size=cfg.get("chunk_size", DEFAULT_CHUNK_SIZE),
            overlap_size=cfg.get("overlap_size", cfg.get("overlap", DEFAULT_OVERLAP)),
            token_counter=token_counter,
            max_chunks=cfg.get("max_chunks", MAX_CHUNKS_PER_DOCUMENT),
        )

    def chunk(self, content: str, document_id: str) -> list[TextChunk]:
        """Split ``content`` into overlapping chunks.

        Parameters
        ----------
        content : str
            Source text.
        document_id : str
            Identifier of the owning document, used to derive chunk ids.

        Returns
        -------
        list[TextChunk]
            Chunks in document order. Empty when ``content`` is empty or only
            whitespace. Windows holding only whitespace are skipped, so no
            chunk is blank and chunk indexes stay contiguous.

        Raises
        ------
        ChunkingConfigError
            If the document would exceed ``max_chunks`` chunks.
        """
        if not content or not content.strip():
            return []

        offsets = self.token_counter.token_offsets(content)
        n_tokens = len(offsets)
        if n_tokens == 0:
            return []

        expected = 1 if n_tokens <= self.chunk_size else 1 + -(-(n_tokens - self.chunk_size) // self.stride)
        if expected > self.max_chunks:
            raise ChunkingConfigError(
                f"Document {document_id!r} would produce {expected} chunks "
                f"(limit {self.max_chunks}); increase chunk_size"
            )

        chunks: list[TextChunk] = []
        skipped = 0
        cursor = 0
        while True:
            end_token = min(cursor + self.chunk_size, n_tokens)
            start_char = 0 if cursor == 0 else offsets[cursor]
            end_char = offsets[end_token] if end_token < n_tokens else len(content)

            window = content[start_char:end_char]
            if window.strip():
                index = len(chunks)
                chunks.append(
                    TextChunk(
                        id=f"{document_id}-chunk-{index}",
                        document_id=document_id,
                        chunk_index=index,
                        content=window,
                        start_offset=start_char,
                        end_offset=end_char,
                        token_count=end_token - cursor,
                    )
                )
            else:
                skipped += 1

            if end_token >= n_tokens:
                break
            cursor += self.stride

        logger.debug(
            "Chunked document %s into %d chunks, %d blank windows skipped (%d tokens, size=%d, overlap=%d)",
            document_id,
            len(chunks),
            skipped,
            n_tokens,
            self.chunk_size,
            self.overlap_size,
        )
        return chunks


def get_chunks_from_text(
        content: str,
        document_id: str,
        *,
        token_counter: TokenCounter,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ) -> list[TextChunk]:
    """Chunk a single text using an explicit token counter.

    Parameters
    ----------
    content : str
        Source text.
    document_id : str
        Identifier of the owning document.
    token_counter : TokenCounter
        Token counter used to measure chunk size.
    chunk_size : int, optional
        Maximum tokens per chunk. Defaults to ``800``.
    overlap : int, optional
        Tokens shared by consecutive chunks. Defaults to ``100``.

    Returns
    -------
    list[TextChunk]
        Chunked text.
    """
    chunker = TextChunker(chunk_size=chunk_size, overlap_size=overlap, token_counter=token_counter)
    return chunker.chunk(content, document_id)


__all__ = [
    "TextChunker",
    "get_chunks_from_text",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_OVERLAP",
]

"""knowledge_rag.retrieval.types

Protocols for the external collaborators of the knowledge-base core.

These describe the narrow interfaces the indexing and query pipelines rely
on, so that concrete loaders, embedding providers, reranker channels and
answer generators can be swapped (or faked in tests) without touching the
pipelines.

Classes
-------
DocumentLoader
    Loads documents from a path or a directory tree.
EmbeddingProvider
    Maps text to a fixed-dimensionality vector.
RerankerChannel
    Scores candidate chunk texts against a question.
AnswerGenerator
    Produces an answer from a system prompt and a user message.
Retriever
    Returns prompt-ready chunks for a query.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, Sequence

from knowledge_rag.common.schemas import LoadedDocument, RetrievedChunk

if TYPE_CHECKING:
    from knowledge_rag.generation.llm_interface import GeneratedAnswer


class DocumentLoader(Protocol):
    def load(self, path: str, *, identity: str | None = None) -> LoadedDocument:
        """Load a single document, recording it under ``identity`` when given.

        Raises
        ------
        DocumentLoadError
            If the path is missing, not a file or unreadable.
        """
        ...

    def iter_paths(self, path: str) -> list[Path]:
        """Return the supported files below ``path`` in load order."""
        ...

    def load_directory(self, path: str) -> list[LoadedDocument]:
        """Load every supported document below ``path``."""
        ...


class EmbeddingProvider(Protocol):
    def embed_query(self, query: str) -> list[float]:
        ...


class RerankerChannel(Protocol):
    """Scores candidate texts for relevance to a question.

    ``score`` returns one entry per input text, in input order. An entry is a
    relevance value in ``[0, 1]``, or ``None`` when the channel could not
    score that text.
    """

    def score(self, question: str, chunk_texts: Sequence[str]) -> list[float | None]:
        ...


class AnswerGenerator(Protocol):
    def generate_answer(self, system_prompt: str, user_message: str) -> "GeneratedAnswer":
        ...


class Retriever(Protocol):
    """Protocol defining the retriever interface.

    A retriever takes a natural-language query and returns ranked chunks
    carrying their similarity scores and document provenance.
    """

    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RetrievedChunk]:
        ...


__all__ = [
    "DocumentLoader",
    "EmbeddingProvider",
    "RerankerChannel",
    "AnswerGenerator",
    "Retriever",
]

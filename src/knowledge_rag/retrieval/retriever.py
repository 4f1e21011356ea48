"""knowledge_rag.retrieval.retriever

Similarity search over the knowledge-base store.

The search service embeds a query, normalises the vector and linearly scans
every stored chunk, scoring each with a dot product. The scan is exhaustive
and exact. Callers depend only on :meth:`SearchService.search` /
:meth:`SearchService.retrieve`, so the scan can later be replaced by an
approximate index without touching them.

Classes
-------
SearchService
    Brute-force cosine-similarity search with deterministic ordering.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import numpy as np

from knowledge_rag.common.schemas import RetrievedChunk, SearchResult
from knowledge_rag.retrieval.embedder import EmbeddingService
from knowledge_rag.retrieval.knowledge_base_store import BaseKnowledgeBaseStore
from knowledge_rag.retrieval.normalizer import VectorNormalizer

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_MIN_SIMILARITY = 0.4


class SearchService:
    """Rank stored chunks by similarity to a query.

    Results are ordered by descending score, ties broken by ascending
    ``chunk_index`` and then ascending ``document_id``.

    Parameters
    ----------
    store : BaseKnowledgeBaseStore
        Store to scan.
    embedding_service : EmbeddingService
        Retrying embedding front end used for query vectors.
    normalizer : VectorNormalizer or None, optional
        Normaliser for query vectors.
    default_top_k : int, optional
        Result limit used by :meth:`retrieve` when none is given.
    default_min_similarity : float, optional
        Score floor used by :meth:`retrieve` when none is given.
    """

    def __init__(
        self,
        store: BaseKnowledgeBaseStore,
        embedding_service: EmbeddingService,
        *,
        normalizer: VectorNormalizer | None = None,
        default_top_k: int = DEFAULT_TOP_K,
        default_min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        self.store = store
        self.embedding_service = embedding_service
        self.normalizer = normalizer or VectorNormalizer()
        self.default_top_k = int(default_top_k)
        self.default_min_similarity = float(default_min_similarity)

    @classmethod
    def from_config_dict(
        cls,
        config: Mapping[str, Any] | None,
        *,
        store: BaseKnowledgeBaseStore,
        embedding_service: EmbeddingService,
        normalizer: VectorNormalizer | None = None,
    ) -> "SearchService":
        """Create a search service from the ``search`` configuration section."""
        cfg = dict(config or {})
        return cls(
            store,
            embedding_service,
            normalizer=normalizer,
            default_top_k=int(cfg.get("top_k", DEFAULT_TOP_K)),
            default_min_similarity=float(cfg.get("min_similarity", DEFAULT_MIN_SIMILARITY)),
        )

    def search(self, query: str, limit: int, min_similarity: float = 0.0) -> list[SearchResult]:
        """Return up to ``limit`` chunks scoring at least ``min_similarity``.

        Parameters
        ----------
        query : str
            Natural-language query.
        limit : int
            Maximum number of results.
        min_similarity : float, optional
            Inclusive score floor in ``[0, 1]``. Defaults to ``0.0``.

        Returns
        -------
        list[SearchResult]
            Ranked results; empty for a blank query, an empty store or when
            nothing reaches ``min_similarity``.

        Raises
        ------
        EmbeddingGenerationError
            If the query embedding cannot be produced.
        StorageError
            If the store cannot be read.
        """
        if not query or not query.strip() or limit <= 0:
            return []

        query_vec = self.normalizer.normalize(self.embedding_service.embed(query))
        if self.normalizer.is_degenerate(query_vec):
            logger.warning("Query embedding is a zero vector; returning no results")
            return []
        q = np.asarray(query_vec, dtype=np.float64)

        scored: list[tuple[float, int, str, Any]] = []
        scanned = 0
        for chunk in self.store.scan_all_chunks():
            scanned += 1
            if len(chunk.embedding) != q.shape[0]:
                logger.warning(
                    "Skipping chunk %s: %d-d embedding vs %d-d query",
                    chunk.id,
                    len(chunk.embedding),
                    q.shape[0],
                )
                continue
            score = self.normalizer.to_score(float(np.dot(q, np.asarray(chunk.embedding, dtype=np.float64))))
            if score < min_similarity:
                continue
            scored.append((score, chunk.chunk_index, chunk.document_id, chunk))

        scored.sort(key=lambda t: (-t[0], t[1], t[2]))
        top = scored[:limit]
        logger.debug("Scanned %d chunks, %d above %.2f, returning %d", scanned, len(scored), min_similarity, len(top))
        if not top:
            return []

        documents = self.store.get_documents_by_ids({t[2] for t in top})
        results: list[SearchResult] = []
        for score, _, document_id, chunk in top:
            doc = documents.get(document_id)
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    document_id=document_id,
                    content=chunk.content,
                    similarity=score,
                    chunk_index=chunk.chunk_index,
                    document_title=doc.title if doc else None,
                    document_file_path=doc.file_path if doc else None,
                )
            )
        return results

    def search_with_threshold(self, query: str, limit: int, min_similarity: float) -> list[SearchResult]:
        return self.search(query, limit=limit, min_similarity=min_similarity)

    def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RetrievedChunk]:
        """Search with configured defaults and return prompt-ready chunks."""
        results = self.search(
            query,
            limit=self.default_top_k if top_k is None else int(top_k),
            min_similarity=self.default_min_similarity if min_similarity is None else float(min_similarity),
        )
        return [RetrievedChunk.from_search_result(r) for r in results]


__all__ = ["SearchService", "DEFAULT_TOP_K", "DEFAULT_MIN_SIMILARITY"]

"""knowledge_rag.pipelines.indexing_pipeline

Document indexing orchestration.

:class:`DocumentIndexer` runs the indexing flow for one document or a
directory of documents:

1. load the document;
2. split it into overlapping chunks;
3. embed every chunk (with retry) and L2-normalise the vectors;
4. write the document and its full chunk set to the store in one transaction.

Each document yields an :class:`~knowledge_rag.common.schemas.IndexingResult`
that distinguishes full success, degraded coverage (some chunks failed to
embed) and failure.

Classes
-------
DocumentIndexer
    Indexes documents into a knowledge-base store.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Sequence

from knowledge_rag.common.exceptions import (
    ChunkingConfigError,
    DocumentLoadError,
    EmbeddingGenerationError,
    StorageError,
)
from knowledge_rag.common.schemas import (
    Document,
    DocumentChunk,
    IndexingResult,
    LoadedDocument,
    normalize_file_path,
)
from knowledge_rag.retrieval.embedder import EmbeddingService
from knowledge_rag.retrieval.knowledge_base_store import BaseKnowledgeBaseStore
from knowledge_rag.retrieval.normalizer import VectorNormalizer
from knowledge_rag.retrieval.text_splitter import TextChunker
from knowledge_rag.retrieval.types import DocumentLoader

logger = logging.getLogger(__name__)

NO_CONTENT_ERROR = "Document has no content to index"
ALL_EMBEDDINGS_FAILED_ERROR = "Failed to generate embeddings for all chunks"


class DocumentIndexer:
    """Index documents into a knowledge-base store.

    Parameters
    ----------
    loader : DocumentLoader
        Source of documents.
    chunker : TextChunker
        Splits document content into chunks.
    embedding_service : EmbeddingService
        Produces chunk embeddings, retrying transient failures.
    store : BaseKnowledgeBaseStore
        Destination store.
    normalizer : VectorNormalizer or None, optional
        Vector normaliser. Defaults to :class:`VectorNormalizer()`.

    Notes
    -----
    :class:`~knowledge_rag.common.exceptions.EmbeddingDimensionError` is not
    converted into a result; it signals a misconfigured embedding model and
    propagates to the caller.
    """

    def __init__(
        self,
        loader: DocumentLoader,
        chunker: TextChunker,
        embedding_service: EmbeddingService,
        store: BaseKnowledgeBaseStore,
        normalizer: VectorNormalizer | None = None,
    ):
        self.loader = loader
        self.chunker = chunker
        self.embedding_service = embedding_service
        self.store = store
        self.normalizer = normalizer or VectorNormalizer()

    def index_document(self, path: str | Path, *, identity: str | None = None) -> IndexingResult:
        """Load and index a single file.

        ``identity`` is the path recorded for the document; it defaults to
        ``path``. A load failure becomes a failed result.
        """
        logger.info("Indexing %s", path)
        try:
            loaded = self.loader.load(str(path), identity=identity)
        except DocumentLoadError as e:
            logger.warning("Could not load %s: %s", path, e.reason)
            return IndexingResult(
                document_id=None,
                file_path=normalize_file_path(identity if identity is not None else str(path)),
                chunks_count=0,
                success=False,
                error=str(e),
            )
        return self.index_loaded(loaded)

    def index_loaded(self, loaded: LoadedDocument) -> IndexingResult:
        """Index a document that has already been loaded.

        Parameters
        ----------
        loaded : LoadedDocument
            Document to index. Its ``file_path`` is the identity key; an
            existing document with the same path keeps its id.

        Returns
        -------
        IndexingResult
            Outcome of the run.
        """
        file_path = normalize_file_path(loaded.file_path)

        try:
            existing = self.store.get_document_by_path(file_path)
        except StorageError as e:
            logger.error("Indexing failed for %s: %s", file_path, e)
            return IndexingResult(None, file_path, 0, success=False, error=str(e))

        document = Document(file_path=file_path, title=loaded.title, content=loaded.content)
        if existing is not None:
            document.id = existing.id

        try:
            text_chunks = self.chunker.chunk(loaded.content, document.id)
        except ChunkingConfigError as e:
            logger.warning("Skipping %s: %s", file_path, e)
            return IndexingResult(document.id, file_path, 0, success=False, error=str(e))
        logger.debug("%s split into %d chunks", file_path, len(text_chunks))
        if not text_chunks:
            logger.warning("Skipping %s: %s", file_path, NO_CONTENT_ERROR)
            return IndexingResult(document.id, file_path, 0, success=False, error=NO_CONTENT_ERROR)

        chunks: list[DocumentChunk] = []
        failures = 0
        last_error: str | None = None
        for text_chunk in text_chunks:
            try:
                raw = self.embedding_service.embed(text_chunk.content)
            except (EmbeddingGenerationError, ValueError) as e:
                failures += 1
                last_error = str(e)
                logger.warning("Embedding failed for chunk %s: %s", text_chunk.id, e)
                continue

            if self.normalizer.is_degenerate(raw):
                failures += 1
                last_error = f"Degenerate embedding for chunk {text_chunk.id}"
                logger.warning("Discarding zero-norm embedding for chunk %s", text_chunk.id)
                continue

            chunks.append(DocumentChunk.from_text_chunk(text_chunk, self.normalizer.normalize(raw)))

        if not chunks:
            logger.warning("Skipping %s: %s", file_path, ALL_EMBEDDINGS_FAILED_ERROR)
            return IndexingResult(
                document.id,
                file_path,
                0,
                success=False,
                error=ALL_EMBEDDINGS_FAILED_ERROR,
                errors_count=failures,
            )

        document.chunk_count = len(chunks)
        try:
            saved = self.store.save_document_with_chunks(document, chunks)
            stored_count = self.store.count_chunks(saved.id)
        except StorageError as e:
            logger.error("Indexing failed for %s: %s", file_path, e)
            return IndexingResult(document.id, file_path, 0, success=False, error=str(e), errors_count=failures)

        if stored_count != len(chunks):
            error = f"Chunk count mismatch after write: expected {len(chunks)}, stored {stored_count}"
            logger.error("Indexing failed for %s: %s", file_path, error)
            return IndexingResult(saved.id, file_path, stored_count, success=False, error=error, errors_count=failures)

        result = IndexingResult(
            document_id=saved.id,
            file_path=file_path,
            chunks_count=len(chunks),
            success=True,
            error=last_error if failures else None,
            errors_count=failures,
        )
        if failures:
            logger.warning(
                "Indexed %s with degraded coverage: %d/%d chunks failed",
                file_path,
                failures,
                len(text_chunks),
            )
        else:
            logger.info("Indexed %s (%d chunks)", file_path, len(chunks))
        return result

    def index_many(self, documents: Sequence[LoadedDocument], max_workers: int = 1) -> list[IndexingResult]:
        """Index loaded documents, returning results in input order."""
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if max_workers == 1 or len(documents) <= 1:
            return [self.index_loaded(d) for d in documents]
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(self.index_loaded, documents))

    def index_directory(self, path: str | Path, max_workers: int = 1) -> list[IndexingResult]:
        """Index every supported document below ``path``.

        One document's failure never stops the others.

        Parameters
        ----------
        path : str or Path
            Directory to walk.
        max_workers : int, optional
            Number of documents indexed concurrently. Defaults to ``1``.

        Returns
        -------
        list[IndexingResult]
            One result per supported file, in path order. Files that cannot
            be loaded yield failed results.

        Raises
        ------
        DocumentLoadError
            If ``path`` is not a directory.
        ValueError
            If ``max_workers`` is less than 1.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        root = Path(path)
        jobs = [(p, p.relative_to(root).as_posix()) for p in self.loader.iter_paths(root)]

        def run(job: tuple[Path, str]) -> IndexingResult:
            return self.index_document(job[0], identity=job[1])

        if max_workers == 1 or len(jobs) <= 1:
            results = [run(job) for job in jobs]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                results = list(pool.map(run, jobs))
        succeeded = sum(1 for r in results if r.success)
        logger.info("Directory %s: %d/%d documents indexed", path, succeeded, len(results))
        return results


__all__ = ["DocumentIndexer", "NO_CONTENT_ERROR", "ALL_EMBEDDINGS_FAILED_ERROR"]

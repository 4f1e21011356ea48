import math

import pytest

from knowledge_rag.common.exceptions import (
    EmbeddingDimensionError,
    EmbeddingGenerationError,
    StorageError,
)
from knowledge_rag.common.schemas import IndexingStatus, LoadedDocument
from knowledge_rag.common.tokenisation import HeuristicTokenCounter
from knowledge_rag.pipelines.indexing_pipeline import (
    ALL_EMBEDDINGS_FAILED_ERROR,
    NO_CONTENT_ERROR,
    DocumentIndexer,
)
from knowledge_rag.retrieval.document_loader import FileSystemDocumentLoader
from knowledge_rag.retrieval.embedder import BaseEmbedder, EmbeddingService, RetryPolicy
from knowledge_rag.retrieval.knowledge_base_store import SQLKnowledgeBaseStore
from knowledge_rag.retrieval.text_splitter import TextChunker


class DummyEmbeddingService:
    """Embeds text as ``[1, len(text), ...]``; selected letters fail or embed to zero."""

    def __init__(self, fail_on: str = "", zero_on: str = "", dim: int = 2):
        self.fail_on = fail_on
        self.zero_on = zero_on
        self.dim = dim
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail_on and self.fail_on in text:
            raise EmbeddingGenerationError("provider down", attempts=3)
        if self.zero_on and self.zero_on in text:
            return [0.0] * self.dim
        return [1.0, float(len(text))] + [0.0] * (self.dim - 2)


class LetterCountEmbedder(BaseEmbedder):
    """Provider adapter embedding text as ``[1, number of letters]``."""

    def get_embedder(self):
        return self

    @classmethod
    def from_config_dict(cls, config, callback_manager=None):
        return cls()

    def embed_query(self, query):
        return [1.0, float(sum(ch.isalpha() for ch in query))]


class RejectingEmbeddingService(DummyEmbeddingService):
    """Rejects texts containing a marker with ``ValueError``, as providers do for bad input."""

    def embed(self, text: str) -> list[float]:
        if "!" in text:
            raise ValueError("input rejected by provider")
        return super().embed(text)


@pytest.fixture
def store():
    return SQLKnowledgeBaseStore.from_url("sqlite://")


@pytest.fixture
def chunker():
    return TextChunker(10, 0, token_counter=HeuristicTokenCounter(chars_per_token=1))


def _indexer(store, chunker, embedding_service=None) -> DocumentIndexer:
    return DocumentIndexer(
        loader=FileSystemDocumentLoader(),
        chunker=chunker,
        embedding_service=embedding_service or DummyEmbeddingService(),
        store=store,
    )


def _doc(content: str, path: str = "docs/guide.md") -> LoadedDocument:
    return LoadedDocument(file_path=path, title="Guide", content=content)


def test_indexes_document_with_normalised_embeddings(store, chunker):
    result = _indexer(store, chunker).index_loaded(_doc("a" * 10 + "b" * 10 + "c" * 5))

    assert result.success
    assert result.status is IndexingStatus.SUCCEEDED
    assert result.chunks_count == 3
    assert result.error is None
    chunks = store.get_chunks_by_document(result.document_id)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert all(math.isclose(math.sqrt(sum(x * x for x in c.embedding)), 1.0) for c in chunks)
    document = store.get_document(result.document_id)
    assert document.file_path == "docs/guide.md"
    assert document.chunk_count == 3


def test_reindexing_keeps_document_id_and_replaces_chunks(store, chunker):
    indexer = _indexer(store, chunker)

    first = indexer.index_loaded(_doc("a" * 30))
    second = indexer.index_loaded(_doc("b" * 12))

    assert second.document_id == first.document_id
    assert store.count_chunks(first.document_id) == 2
    assert store.get_statistics().documents_count == 1


def test_blank_document_is_not_indexed(store, chunker):
    result = _indexer(store, chunker).index_loaded(_doc("   \n  "))

    assert not result.success
    assert result.error == NO_CONTENT_ERROR
    assert store.get_document_by_path("docs/guide.md") is None


def test_all_embeddings_failing_writes_nothing(store, chunker):
    service = DummyEmbeddingService(fail_on="a")

    result = _indexer(store, chunker, service).index_loaded(_doc("a" * 25))

    assert result.status is IndexingStatus.FAILED
    assert result.error == ALL_EMBEDDINGS_FAILED_ERROR
    assert result.errors_count == 3
    assert store.get_statistics().documents_count == 0


def test_partial_embedding_failure_is_degraded(store, chunker):
    service = DummyEmbeddingService(fail_on="b")

    result = _indexer(store, chunker, service).index_loaded(_doc("a" * 10 + "b" * 10 + "c" * 10))

    assert result.success
    assert result.status is IndexingStatus.DEGRADED
    assert result.chunks_count == 2
    assert result.errors_count == 1
    assert "provider down" in result.error
    chunks = store.get_chunks_by_document(result.document_id)
    assert [c.chunk_index for c in chunks] == [0, 2]


def test_zero_embedding_counts_as_chunk_failure(store, chunker):
    service = DummyEmbeddingService(zero_on="c")

    result = _indexer(store, chunker, service).index_loaded(_doc("a" * 10 + "c" * 10))

    assert result.status is IndexingStatus.DEGRADED
    assert result.errors_count == 1
    assert store.count_chunks(result.document_id) == 1


def test_storage_error_becomes_failed_result(store, chunker, monkeypatch):
    def broken(path):
        raise StorageError("database is locked")

    monkeypatch.setattr(store, "get_document_by_path", broken)

    result = _indexer(store, chunker).index_loaded(_doc("a" * 10))

    assert not result.success
    assert result.document_id is None
    assert "database is locked" in result.error


def test_chunk_count_mismatch_after_write_fails(store, chunker, monkeypatch):
    monkeypatch.setattr(store, "count_chunks", lambda document_id: 0)

    result = _indexer(store, chunker).index_loaded(_doc("a" * 20))

    assert not result.success
    assert result.error.startswith("Chunk count mismatch after write")


def test_dimension_change_propagates(store, chunker):
    _indexer(store, chunker, DummyEmbeddingService(dim=3)).index_loaded(_doc("a" * 10, path="old.md"))

    with pytest.raises(EmbeddingDimensionError):
        _indexer(store, chunker, DummyEmbeddingService(dim=2)).index_loaded(_doc("b" * 10, path="new.md"))

    assert store.get_document_by_path("new.md") is None


def test_missing_file_yields_failed_result(store, chunker, tmp_path):
    result = _indexer(store, chunker).index_document(tmp_path / "absent.md")

    assert not result.success
    assert result.document_id is None
    assert "file does not exist" in result.error


def test_index_document_reads_title_from_heading(store, chunker, tmp_path):
    path = tmp_path / "setup.md"
    path.write_text("# Setup Guide\n\nInstall the tool.\n", encoding="utf-8")

    result = _indexer(store, chunker).index_document(path)

    assert result.success
    assert store.get_document(result.document_id).title == "Setup Guide"


@pytest.mark.parametrize("max_workers", [1, 3])
def test_index_directory_isolates_failures(store, chunker, tmp_path, max_workers):
    (tmp_path / "a.md").write_text("alpha " * 5, encoding="utf-8")
    (tmp_path / "b.txt").write_text("   ", encoding="utf-8")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "c.md").write_text("gamma " * 5, encoding="utf-8")
    (tmp_path / "skip.bin").write_text("ignored", encoding="utf-8")

    results = _indexer(store, chunker).index_directory(tmp_path, max_workers=max_workers)

    assert [r.file_path for r in results] == ["a.md", "b.txt", "sub/c.md"]
    assert [r.success for r in results] == [True, False, True]
    assert store.get_statistics().documents_count == 2


def test_index_many_rejects_non_positive_workers(store, chunker):
    with pytest.raises(ValueError):
        _indexer(store, chunker).index_many([_doc("a")], max_workers=0)


def test_whitespace_windows_do_not_abort_sibling_documents(store, chunker):
    service = EmbeddingService(LetterCountEmbedder(), retry_policy=RetryPolicy(max_attempts=1))
    documents = [
        LoadedDocument("a.md", "A", "abcdefghij" + " " * 10 + "klmnopqrst"),
        LoadedDocument("b.md", "B", "hello world"),
    ]

    results = _indexer(store, chunker, service).index_many(documents)

    assert [r.status for r in results] == [IndexingStatus.SUCCEEDED, IndexingStatus.SUCCEEDED]
    chunks = store.get_chunks_by_document(results[0].document_id)
    assert [c.content for c in chunks] == ["abcdefghij", "klmnopqrst"]
    assert [c.chunk_index for c in chunks] == [0, 1]


def test_rejected_chunk_text_is_a_chunk_failure(store, chunker):
    service = RejectingEmbeddingService()

    result = _indexer(store, chunker, service).index_loaded(_doc("a" * 10 + "!" * 10))

    assert result.status is IndexingStatus.DEGRADED
    assert result.errors_count == 1
    assert result.error == "input rejected by provider"


def test_chunk_limit_fails_only_the_oversized_document(store):
    chunker = TextChunker(10, 0, token_counter=HeuristicTokenCounter(chars_per_token=1), max_chunks=2)
    documents = [_doc("x" * 50, path="big.md"), _doc("small text", path="b.md")]

    results = _indexer(store, chunker).index_many(documents)

    assert [r.success for r in results] == [False, True]
    assert "would produce 5 chunks (limit 2)" in results[0].error
    assert store.get_document_by_path("big.md") is None
    assert store.get_document_by_path("b.md") is not None


def test_index_directory_reports_unreadable_files(store, chunker, tmp_path):
    (tmp_path / "bad.md").write_bytes(b"\xff\xfe\xfa")
    (tmp_path / "good.md").write_text("# Good\n\ncontent", encoding="utf-8")

    results = _indexer(store, chunker).index_directory(tmp_path, max_workers=2)

    assert [(r.file_path, r.success) for r in results] == [("bad.md", False), ("good.md", True)]
    assert results[0].document_id is None
    assert results[0].error.startswith("Failed to load document")

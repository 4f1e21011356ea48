import pytest

from knowledge_rag.common.exceptions import EmbeddingGenerationError
from knowledge_rag.retrieval.embedder import (
    BaseEmbedder,
    EmbeddingService,
    RetryPolicy,
    create_embedder,
    create_embedding_service,
)


class FlakyEmbedder(BaseEmbedder):
    """Embedder whose first ``failures`` calls raise ``error``."""

    def __init__(self, failures: int = 0, error: Exception | None = None, vector=None):
        self.failures = failures
        self.error = error or ConnectionError("provider unavailable")
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.calls = 0

    def get_embedder(self):
        return self

    @classmethod
    def from_config_dict(cls, config, callback_manager=None):
        return cls()

    def embed_query(self, query):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return list(self.vector)

    def embed_documents(self, documents):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return [list(self.vector) for _ in documents]


@pytest.fixture
def sleeps():
    return []


def _service(embedder, sleeps, **policy):
    return EmbeddingService(
        embedder,
        retry_policy=RetryPolicy(**policy),
        sleep=sleeps.append,
    )


def test_retry_policy_delays_double_and_cap():
    policy = RetryPolicy(max_attempts=8, base_delay=2.0, max_delay=30.0)

    assert [policy.delay_for(i) for i in range(6)] == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_transient_failures_are_retried_until_success(sleeps):
    embedder = FlakyEmbedder(failures=3)
    service = _service(embedder, sleeps, max_attempts=5, base_delay=1.0, max_delay=10.0)

    assert service.embed("hello") == [0.1, 0.2, 0.3]
    assert embedder.calls == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_exhausted_retries_raise_generation_error(sleeps):
    embedder = FlakyEmbedder(failures=100)
    service = _service(embedder, sleeps, max_attempts=3, base_delay=0.5, max_delay=10.0)

    with pytest.raises(EmbeddingGenerationError) as excinfo:
        service.embed("hello")

    assert excinfo.value.attempts == 3
    assert embedder.calls == 3
    assert sleeps == [0.5, 1.0]


def test_permanent_errors_are_not_retried(sleeps):
    embedder = FlakyEmbedder(failures=100, error=ValueError("bad input"))
    service = _service(embedder, sleeps, max_attempts=5)

    with pytest.raises(EmbeddingGenerationError) as excinfo:
        service.embed("hello")

    assert excinfo.value.attempts == 1
    assert embedder.calls == 1
    assert sleeps == []


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_text_is_rejected_without_calling_provider(sleeps, text):
    embedder = FlakyEmbedder()
    service = _service(embedder, sleeps)

    with pytest.raises(ValueError):
        service.embed(text)
    assert embedder.calls == 0


def test_empty_embedding_is_a_generation_error(sleeps):
    service = _service(FlakyEmbedder(vector=[]), sleeps)

    with pytest.raises(EmbeddingGenerationError):
        service.embed("hello")


def test_embed_many_returns_one_vector_per_text(sleeps):
    embedder = FlakyEmbedder(failures=1)
    service = _service(embedder, sleeps, base_delay=0.0)

    vectors = service.embed_many(["a", "b", "c"])

    assert len(vectors) == 3
    assert embedder.calls == 2
    assert service.embed_many([]) == []


def test_check_health_reports_failure_without_retrying(sleeps):
    embedder = FlakyEmbedder(failures=100)
    service = _service(embedder, sleeps)

    assert service.check_health() is False
    assert embedder.calls == 1
    assert _service(FlakyEmbedder(), sleeps).check_health() is True


def test_create_embedding_service_reads_retry_section():
    embedder = FlakyEmbedder()
    service = create_embedding_service(
        {"type": "huggingface", "retry": {"max_attempts": 2, "base_delay": 0.1, "max_delay": 1.0}},
        embedder=embedder,
    )

    assert service.embedder is embedder
    assert service.retry_policy == RetryPolicy(max_attempts=2, base_delay=0.1, max_delay=1.0)


def test_create_embedder_rejects_unknown_kind():
    with pytest.raises(ValueError):
        create_embedder({"type": "word2vec"})

    with pytest.raises(TypeError):
        create_embedder(["not", "a", "mapping"])

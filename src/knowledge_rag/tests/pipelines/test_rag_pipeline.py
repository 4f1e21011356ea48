import pytest

from knowledge_rag.common.schemas import RetrievedChunk
from knowledge_rag.generation.llm_interface import GeneratedAnswer
from knowledge_rag.generation.prompt_builder import ContextAssembler
from knowledge_rag.pipelines.rag_pipeline import RAGPipeline
from knowledge_rag.retrieval.relevance_filter import FilterType, RelevanceFilter


def _chunk(i: int, similarity: float, path: str = "docs/guide.md") -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=f"c{i}",
        document_id="d1",
        content=f"fact number {i}",
        similarity=similarity,
        chunk_index=i,
        document_title="Guide",
        document_file_path=path,
    )


class DummySearchService:
    def __init__(self, chunks):
        self.chunks = chunks
        self.calls = []

    def retrieve(self, query, top_k=None, min_similarity=None):
        self.calls.append((query, top_k, min_similarity))
        return list(self.chunks)


class DummyLLM:
    """Answer generator that records the prompt it was given."""

    def __init__(self, answer: str = "Answer.", tokens: int = 42):
        self.answer = answer
        self.tokens = tokens
        self.prompts = []

    def generate_answer(self, system_prompt, user_message):
        self.prompts.append((system_prompt, user_message))
        return GeneratedAnswer(answer_text=self.answer, tokens_used=self.tokens)


def _pipeline(chunks, llm=None, relevance_filter=None):
    return RAGPipeline(
        search_service=DummySearchService(chunks),
        context_assembler=ContextAssembler(),
        llm=llm or DummyLLM(),
        relevance_filter=relevance_filter,
    )


@pytest.mark.parametrize("question", ["", "   "])
def test_blank_question_is_rejected(question):
    with pytest.raises(ValueError):
        _pipeline([]).run(question)


def test_answer_with_context():
    llm = DummyLLM(answer="Deploy with make [Source: Guide](docs/guide.md)")
    pipeline = _pipeline([_chunk(0, 0.9), _chunk(1, 0.8)], llm=llm)

    response = pipeline.run("How do I deploy?", top_k=3, min_similarity=0.2)

    assert pipeline.search_service.calls == [("How do I deploy?", 3, 0.2)]
    assert response.has_context
    assert [c.chunk_id for c in response.context_chunks] == ["c0", "c1"]
    assert response.tokens_used == 42
    system, user = llm.prompts[0]
    assert "fact number 0" in system
    assert user == "Question: How do I deploy?\n\nAnswer:"
    assert response.system_prompt == system
    assert response.citations.all_valid
    assert [c.document_path for c in response.citations.valid_citations] == ["docs/guide.md"]


def test_no_context_falls_back_to_general_prompt():
    llm = DummyLLM()

    response = _pipeline([], llm=llm)("What is the capital of France?")

    assert not response.has_context
    assert "Chunk" not in llm.prompts[0][0]
    assert response.filter_stats is None
    assert response.answer == "Answer."


def test_filter_stats_and_dropped_chunks():
    relevance = RelevanceFilter.from_config_dict({"type": "threshold", "threshold": {"min_similarity": 0.6}})
    llm = DummyLLM()
    pipeline = _pipeline([_chunk(0, 0.9), _chunk(1, 0.65), _chunk(2, 0.4)], llm=llm, relevance_filter=relevance)

    response = pipeline.run("q")

    assert [c.chunk_id for c in response.context_chunks] == ["c0", "c1"]
    assert response.filter_stats.filter_type is FilterType.THRESHOLD
    assert response.filter_stats.retrieved == 3
    assert response.filter_stats.kept == 2
    assert [d.chunk_id for d in response.filter_stats.dropped] == ["c2"]
    assert "fact number 2" not in llm.prompts[0][0]


def test_filter_can_be_skipped_per_call():
    relevance = RelevanceFilter.from_config_dict({"threshold": {"min_similarity": 0.95}})
    pipeline = _pipeline([_chunk(0, 0.9)], relevance_filter=relevance)

    assert not pipeline.run("q").has_context
    response = pipeline.run("q", apply_filter=False)
    assert response.has_context
    assert response.filter_stats is None


def test_citations_outside_context_are_flagged():
    llm = DummyLLM(answer="See [Source: Other](docs/other.md)")

    response = _pipeline([_chunk(0, 0.9)], llm=llm).run("q")

    assert response.citations.has_citations
    assert not response.citations.all_valid
    assert response.citations.valid_citations == []

import json

import pytest

from knowledge_rag.common.exceptions import RerankerUnavailable
from knowledge_rag.retrieval.reranker import LLMReranker, create_reranker, parse_judgements


class DummyLLM:
    """Returns a canned reply and records prompts."""

    def __init__(self, reply: str = "[]", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def generate(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def test_scores_align_with_input_order():
    reply = json.dumps(
        [
            {"index": 2, "relevance": 0.9, "reason": "direct answer"},
            {"index": 0, "relevance": 0.2, "reason": "tangential"},
        ]
    )
    reranker = LLMReranker(DummyLLM(reply))

    assert reranker.score("q", ["a", "b", "c"]) == [0.2, None, 0.9]


def test_fenced_reply_and_out_of_range_values():
    reply = 'Here you go:\n```json\n[{"index": 0, "relevance": 1.7}, {"index": 5, "relevance": 0.5}, {"index": 1, "relevance": -0.3}]\n```'
    reranker = LLMReranker(DummyLLM(reply))

    assert reranker.score("q", ["a", "b"]) == [1.0, 0.0]


def test_llm_failure_raises_unavailable():
    reranker = LLMReranker(DummyLLM(error=TimeoutError("slow")))

    with pytest.raises(RerankerUnavailable):
        reranker.score("q", ["a"])


def test_unparseable_reply_raises_unavailable():
    with pytest.raises(RerankerUnavailable):
        LLMReranker(DummyLLM("I think the first one is best")).score("q", ["a", "b"])

    with pytest.raises(RerankerUnavailable):
        parse_judgements('[{"index": "first"}]')


def test_prompt_contains_question_and_truncated_fragments():
    llm = DummyLLM("[]")
    reranker = LLMReranker(llm, max_content_chars=5)

    reranker.score("How to deploy?", ["abcdefghij"])

    assert "How to deploy?" in llm.prompts[0]
    assert '"abcde"' in llm.prompts[0]
    assert "abcdef" not in llm.prompts[0]


def test_no_texts_skips_the_llm():
    llm = DummyLLM()

    assert LLMReranker(llm).score("q", []) == []
    assert llm.prompts == []


def test_create_reranker():
    llm = DummyLLM()

    reranker = create_reranker(config={"max_chunks": 3, "max_content_chars": 100}, llm=llm)
    assert isinstance(reranker, LLMReranker)
    assert reranker.max_content_chars == 100

    with pytest.raises(ValueError):
        create_reranker(config={"type": "cross_encoder"}, llm=llm)

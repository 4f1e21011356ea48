"""knowledge_rag.retrieval.reranker

LLM-based reranker channel.

The reranker asks a chat LLM to judge how relevant each candidate chunk is to
a question and returns one score per candidate, aligned with the input
order. It never guesses: a candidate the model did not score comes back as
``None``, and a call that fails or returns nothing parseable raises
:class:`~knowledge_rag.common.exceptions.RerankerUnavailable` so the
relevance filter can fall back to the similarity ordering.

Classes
-------
RerankJudgement
    One parsed judgement from the model's JSON reply.
BaseReranker
    Abstract reranker channel.
LLMReranker
    Reranker channel backed by a :class:`~knowledge_rag.generation.llm_interface.BaseLLM`.

Functions
---------
create_reranker
    Create a reranker channel from configuration.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from knowledge_rag.common.exceptions import RerankerUnavailable
from knowledge_rag.generation.llm_interface import BaseLLM

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 500

RERANK_PROMPT = """You are a relevance judge for a document search system.
Rate how useful each text fragment is for answering the question.

Question: {question}

Fragments (JSON):
{fragments}

Respond with ONLY a JSON array, one object per fragment, in this form:
[{{"index": 0, "relevance": 0.85, "reason": "short explanation"}}]

"relevance" is a number between 0.0 (irrelevant) and 1.0 (directly answers the question)."""

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class RerankJudgement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int
    relevance: float
    reason: str = ""


_JUDGEMENTS = TypeAdapter(list[RerankJudgement])


def _extract_json_array(text: str) -> str:
    """Return the outermost ``[...]`` span of ``text``, unwrapping code fences."""
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        raise ValueError("no JSON array in reranker reply")
    return text[start : end + 1]


def parse_judgements(reply: str) -> list[RerankJudgement]:
    """Parse a reranker reply into judgements.

    Raises
    ------
    RerankerUnavailable
        If the reply holds no valid JSON array of judgements.
    """
    try:
        return _JUDGEMENTS.validate_json(_extract_json_array(reply))
    except (ValueError, ValidationError) as e:
        raise RerankerUnavailable(f"Could not parse reranker reply: {e}") from e


class BaseReranker(ABC):
    """Abstract reranker channel."""

    @abstractmethod
    def score(self, question: str, chunk_texts: Sequence[str]) -> list[float | None]:
        """Return a ``[0, 1]`` score or ``None`` per text, aligned with ``chunk_texts``.

        Raises
        ------
        RerankerUnavailable
            If no scores could be obtained at all.
        """
        raise NotImplementedError


class LLMReranker(BaseReranker):
    """Reranker channel that prompts a chat LLM for JSON relevance judgements.

    Parameters
    ----------
    llm : BaseLLM
        Chat model used for judging.
    max_content_chars : int, optional
        Each fragment is truncated to this many characters in the prompt.
    """

    def __init__(self, llm: BaseLLM, *, max_content_chars: int = MAX_CONTENT_CHARS):
        self.llm = llm
        self.max_content_chars = int(max_content_chars)

    def build_prompt(self, question: str, chunk_texts: Sequence[str]) -> str:
        fragments = [
            {"index": i, "content": text[: self.max_content_chars]}
            for i, text in enumerate(chunk_texts)
        ]
        return RERANK_PROMPT.format(
            question=question,
            fragments=json.dumps(fragments, ensure_ascii=False, indent=2),
        )

    def score(self, question: str, chunk_texts: Sequence[str]) -> list[float | None]:
        if not chunk_texts:
            return []

        try:
            reply = self.llm.generate(self.build_prompt(question, chunk_texts))
        except Exception as e:
            raise RerankerUnavailable(f"Reranker call failed: {e}") from e

        scores: list[float | None] = [None] * len(chunk_texts)
        for judgement in parse_judgements(reply):
            if 0 <= judgement.index < len(scores):
                scores[judgement.index] = min(1.0, max(0.0, float(judgement.relevance)))
            else:
                logger.debug("Ignoring judgement for unknown fragment index %d", judgement.index)

        return scores


def create_reranker(*, config: Mapping[str, Any] | None, llm: BaseLLM) -> BaseReranker:
    """Create a reranker channel from the ``relevance_filter.reranker`` section.

    Parameters
    ----------
    config : Mapping[str, Any] or None
        Mapping with an optional ``type`` (only ``llm`` is supported) and
        ``max_content_chars``.
    llm : BaseLLM
        Chat model the channel will prompt.

    Raises
    ------
    ValueError
        If ``type`` names an unsupported reranker.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type", "llm")).lower().strip()

    if kind == "llm":
        return LLMReranker(llm, max_content_chars=int(cfg.get("max_content_chars", MAX_CONTENT_CHARS)))

    raise ValueError(f"Unsupported reranker type {kind!r}. Supported rerankers: ['llm'].")


__all__ = [
    "RerankJudgement",
    "BaseReranker",
    "LLMReranker",
    "parse_judgements",
    "create_reranker",
]

"""knowledge_rag.pipelines.rag_pipeline

End-to-end Retrieval-Augmented Generation (RAG) pipeline orchestration.

This module defines the :class:`RAGPipeline`, which coordinates query-time
retrieval, relevance filtering, prompt assembly, LLM invocation and citation
extraction.

Classes
-------
RAGResponse
    Answer together with the context and diagnostics that produced it.
RAGPipeline
    Orchestrates retrieval -> filtering -> prompt assembly -> generation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from knowledge_rag.common.schemas import RetrievedChunk
from knowledge_rag.generation.citations import AnswerCitations, CitationParser
from knowledge_rag.generation.prompt_builder import ContextAssembler
from knowledge_rag.retrieval.relevance_filter import FilterStats, RelevanceFilter
from knowledge_rag.retrieval.types import AnswerGenerator, Retriever

logger = logging.getLogger(__name__)


@dataclass
class RAGResponse:
    """Result of one pipeline run.

    Attributes
    ----------
    question : str
        The question as asked.
    answer : str
        Generated answer text.
    context_chunks : list[RetrievedChunk]
        Chunks placed in the prompt, in prompt order.
    tokens_used : int
        Tokens reported by the LLM for the call.
    filter_stats : FilterStats or None
        Relevance filter diagnostics; ``None`` when filtering was skipped.
    system_prompt : str
        The system prompt sent to the LLM.
    citations : AnswerCitations or None
        Citations found in the answer, validated against the context.
    """

    question: str
    answer: str
    context_chunks: list[RetrievedChunk] = field(default_factory=list)
    tokens_used: int = 0
    filter_stats: Optional[FilterStats] = None
    system_prompt: str = ""
    citations: Optional[AnswerCitations] = None

    @property
    def has_context(self) -> bool:
        return bool(self.context_chunks)


class RAGPipeline:
    """Retrieval-Augmented Generation (RAG) orchestrator.

    This class wires together:
    - a search service to fetch ranked chunks
    - a relevance filter to prune and reorder them
    - a context assembler to render the prompt
    - an answer generator (LLM) for the reply

    The pipeline holds no per-request state and is safe to reuse across
    requests.

    Parameters
    ----------
    search_service : Retriever
        Returns ranked chunks for the question (typically a
        :class:`~knowledge_rag.retrieval.retriever.SearchService`).
    context_assembler : ContextAssembler
        Builds the system prompt and user message.
    llm : AnswerGenerator
        Produces the answer.
    relevance_filter : RelevanceFilter or None, optional
        Post-search filter. When ``None`` all retrieved chunks are used.
    citation_parser : CitationParser or None, optional
        Extracts citations from answers. Defaults to :class:`CitationParser()`.
    """

    def __init__(
        self,
        search_service: Retriever,
        context_assembler: ContextAssembler,
        llm: AnswerGenerator,
        relevance_filter: RelevanceFilter | None = None,
        citation_parser: CitationParser | None = None,
    ):
        self.search_service = search_service
        self.context_assembler = context_assembler
        self.llm = llm
        self.relevance_filter = relevance_filter
        self.citation_parser = citation_parser or CitationParser()

    def run(
        self,
        question: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
        apply_filter: bool = True,
    ) -> RAGResponse:
        """Answer ``question`` from the knowledge base.

        The execution order is:
        1. Retrieve ranked chunks for the question.
        2. Apply the relevance filter (unless disabled for this call).
        3. Assemble the prompt, with context or the no-context fallback.
        4. Generate the answer and extract its citations.

        Parameters
        ----------
        question : str
            User's natural-language question.
        top_k : int or None, optional
            Search result limit. Defaults to the search service's setting.
        min_similarity : float or None, optional
            Search score floor. Defaults to the search service's setting.
        apply_filter : bool, optional
            Whether to run the relevance filter. Defaults to ``True``.

        Returns
        -------
        RAGResponse
            Answer, context and diagnostics.

        Raises
        ------
        ValueError
            If ``question`` is blank.
        """
        if not question or not question.strip():
            raise ValueError("Question cannot be blank")

        retrieved = self.search_service.retrieve(question, top_k=top_k, min_similarity=min_similarity)
        logger.info("Retrieved %d chunk(s) for question", len(retrieved))

        filter_stats: FilterStats | None = None
        chunks = retrieved
        if apply_filter and self.relevance_filter is not None:
            filtered = self.relevance_filter.apply(question, retrieved)
            chunks, filter_stats = filtered.chunks, filtered.stats

        prompt = self.context_assembler.build_prompt(question, chunks)
        used_chunks = chunks[: prompt.used_chunks]
        if not used_chunks:
            logger.info("No relevant context; answering without knowledge-base documents")

        generated = self.llm.generate_answer(prompt.system_prompt, prompt.user_message)
        citations = self.citation_parser.analyze(generated.answer_text, used_chunks)
        if citations.citations and not citations.all_valid:
            logger.warning(
                "Answer cites %d source(s) outside the context",
                len(citations.citations) - len(citations.valid_citations),
            )

        return RAGResponse(
            question=question,
            answer=generated.answer_text,
            context_chunks=list(used_chunks),
            tokens_used=generated.tokens_used,
            filter_stats=filter_stats,
            system_prompt=prompt.system_prompt,
            citations=citations,
        )

    def __call__(self, question: str, **kwargs) -> RAGResponse:
        """Convenience wrapper around :meth:`run`."""
        return self.run(question, **kwargs)


__all__ = ["RAGResponse", "RAGPipeline"]

"""knowledge_rag.app.container

Composition root for the knowledge-base RAG system.

This module is the single place where concrete implementations are wired
together from configuration (token counter, chunker, embedder, store, search,
relevance filter, LLMs and the two pipelines). Components are constructed
lazily and cached on first access to avoid repeated expensive initialisation.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

Examples
--------
>>> from knowledge_rag.config import GlobalConfig
>>> from knowledge_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config.yaml")
>>> c = build_container(cfg)
>>> c.indexer.index_directory("docs/")
>>> response = c.rag_pipeline.run("How do I reset my password?")
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping

from knowledge_rag.config.logging import configure_logging_from_config


@dataclass(frozen=True)
class KnowledgeBaseContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically
        :class:`knowledge_rag.config.GlobalConfig`).
    """

    config: Any

    @cached_property
    def token_counter(self) -> Any:
        """Return the token counter used for chunk sizing and context budgets."""
        from knowledge_rag.common.tokenisation import create_token_counter

        return create_token_counter(_as_mapping(getattr(self.config, "tokenization", {})))

    @cached_property
    def chunker(self) -> Any:
        from knowledge_rag.retrieval.text_splitter import TextChunker

        return TextChunker.from_config_dict(
            _as_mapping(getattr(self.config, "chunking", {})),
            token_counter=self.token_counter,
        )

    @cached_property
    def normalizer(self) -> Any:
        from knowledge_rag.retrieval.normalizer import VectorNormalizer

        return VectorNormalizer()

    @cached_property
    def embedding_service(self) -> Any:
        """Return the retrying embedding service over the configured embedder."""
        from knowledge_rag.retrieval.embedder import create_embedding_service

        return create_embedding_service(_as_mapping(self.config.embedder))

    @cached_property
    def store(self) -> Any:
        from knowledge_rag.retrieval.knowledge_base_store import create_knowledge_base_store

        return create_knowledge_base_store(_as_mapping(getattr(self.config, "knowledge_base", {})))

    @cached_property
    def document_loader(self) -> Any:
        from knowledge_rag.retrieval.document_loader import FileSystemDocumentLoader

        return FileSystemDocumentLoader.from_config_dict(
            _as_mapping(getattr(self.config, "document_loader", {}))
        )

    @cached_property
    def search_service(self) -> Any:
        from knowledge_rag.retrieval.retriever import SearchService

        return SearchService.from_config_dict(
            _as_mapping(getattr(self.config, "search", {})),
            store=self.store,
            embedding_service=self.embedding_service,
            normalizer=self.normalizer,
        )

    @cached_property
    def generator_llm(self) -> Any:
        """Return the LLM used to generate final answers."""
        from knowledge_rag.generation.llm_interface import create_llm

        return create_llm(dict(_as_mapping(self.config.generator_llm)))

    @cached_property
    def reranker_llm(self) -> Any:
        """Return the LLM behind the reranker channel.

        Shares the generator instance when no separate ``reranker_llm`` section
        is configured.
        """
        from knowledge_rag.generation.llm_interface import create_llm

        section = _as_mapping(getattr(self.config, "reranker_llm", None) or {})
        if not section or section is self.config.generator_llm:
            return self.generator_llm
        return create_llm(dict(section))

    @cached_property
    def relevance_filter(self) -> Any:
        """Return the relevance filter.

        A reranker channel is only constructed for the ``reranker`` and
        ``hybrid`` policies.
        """
        from knowledge_rag.retrieval.relevance_filter import FilterType, RelevanceFilter, RelevanceFilterConfig
        from knowledge_rag.retrieval.reranker import create_reranker

        section = _as_mapping(getattr(self.config, "relevance_filter", {}))
        cfg = RelevanceFilterConfig.from_config_dict(section)
        reranker = None
        if cfg.effective_type in (FilterType.RERANKER, FilterType.HYBRID):
            reranker = create_reranker(config=section.get("reranker"), llm=self.reranker_llm)
        return RelevanceFilter(cfg, reranker=reranker)

    @cached_property
    def prompt_builder(self) -> Any:
        """Return the prompt builder.

        The bundled templates are always loaded; sources listed under
        ``prompts`` are registered on top and may override them. Relative
        paths resolve against the config file directory.
        """
        from knowledge_rag.generation.prompt_builder import PromptBuilder

        builder = PromptBuilder.with_defaults()
        base_dir = getattr(self.config, "base_dir", None)
        for src in getattr(self.config, "prompts", None) or []:
            builder.register_from_source(src, base_dir=base_dir)
        return builder

    @cached_property
    def context_assembler(self) -> Any:
        from knowledge_rag.generation.prompt_builder import (
            CONTEXT_TEMPLATE,
            NO_CONTEXT_TEMPLATE,
            ContextAssembler,
        )

        section = _as_mapping(getattr(self.config, "context", {}))
        max_tokens = section.get("max_context_tokens")
        return ContextAssembler(
            self.prompt_builder,
            context_template=section.get("template", CONTEXT_TEMPLATE),
            no_context_template=section.get("no_context_template", NO_CONTEXT_TEMPLATE),
            max_context_tokens=int(max_tokens) if max_tokens is not None else None,
            token_counter=self.token_counter if max_tokens is not None else None,
        )

    @cached_property
    def indexer(self) -> Any:
        """Return the document indexing pipeline."""
        from knowledge_rag.pipelines.indexing_pipeline import DocumentIndexer

        return DocumentIndexer(
            loader=self.document_loader,
            chunker=self.chunker,
            embedding_service=self.embedding_service,
            store=self.store,
            normalizer=self.normalizer,
        )

    @cached_property
    def rag_pipeline(self) -> Any:
        """Return the fully wired RAG pipeline."""
        from knowledge_rag.pipelines.rag_pipeline import RAGPipeline

        return RAGPipeline(
            search_service=self.search_service,
            context_assembler=self.context_assembler,
            llm=self.generator_llm,
            relevance_filter=self.relevance_filter,
        )


def build_container(config: Any, *, setup_logging: bool = True) -> KnowledgeBaseContainer:
    """Create a :class:`KnowledgeBaseContainer`.

    Parameters
    ----------
    config : Any
        Loaded global configuration object.
    setup_logging : bool, optional
        Configure the package logger from the ``logging`` section. Defaults
        to ``True``.

    Returns
    -------
    KnowledgeBaseContainer
        Container instance with cached component accessors.
    """
    if setup_logging:
        configure_logging_from_config(_as_mapping(getattr(config, "logging", {}) or {}))
    return KnowledgeBaseContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["KnowledgeBaseContainer", "build_container"]

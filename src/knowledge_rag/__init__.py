"""knowledge_rag

Knowledge-base indexing and retrieval package.

This package turns documents into embedding-indexed chunks stored in a
relational database, and answers questions by ranking, filtering and citing
those chunks in a prompt for a chat LLM.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and logging setup.
app
    Composition root for wiring components.
pipelines
    Indexing and question-answering orchestration.
retrieval
    Loading, chunking, embedding, storage, search and relevance filtering.
generation
    Prompt assembly, LLM interface and citation analysis.
common
    Shared schemas, exceptions and token counters.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
KnowledgeBaseContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured
    :class:`~knowledge_rag.app.container.KnowledgeBaseContainer`.
DocumentIndexer
    Indexing pipeline.
RAGPipeline
    Question-answering pipeline.
Document
    Indexed document record.
DocumentChunk
    Persisted chunk with its embedding.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("knowledge-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import KnowledgeBaseContainer, build_container
from .pipelines.indexing_pipeline import DocumentIndexer
from .pipelines.rag_pipeline import RAGPipeline
from .common import Document, DocumentChunk

__all__ = [
    "__version__",
    "GlobalConfig",
    "KnowledgeBaseContainer",
    "build_container",
    "DocumentIndexer",
    "RAGPipeline",
    "Document",
    "DocumentChunk",
]

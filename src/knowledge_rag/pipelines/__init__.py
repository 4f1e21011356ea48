"""knowledge_rag.pipelines

Pipeline orchestration for the knowledge-base RAG system.

Pipelines coordinate the lower-level retrieval and generation components.
They hold no per-request state beyond their configured components and are
safe to reuse across requests.

Modules
-------
indexing_pipeline
    Loading, chunking, embedding and storing documents.
rag_pipeline
    Question answering over the indexed knowledge base.
"""

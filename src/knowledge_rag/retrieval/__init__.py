"""
Retrieval layer of the knowledge-base RAG system.

This package covers everything needed to turn raw documents into searchable
vectors and to fetch the most relevant chunks for a question: loading,
chunking, embedding with retry, vector normalisation, the relational
knowledge-base store, brute-force similarity search and post-search
relevance filtering.

Submodules
----------
document_loader
    Loads Markdown, text and HTML files from disk.
text_splitter
    Token-window chunking with exact overlap.
embedder
    Embedding model wrappers and the retrying embedding service.
normalizer
    L2 normalisation and similarity scoring.
store_models
    SQLAlchemy table mappings.
knowledge_base_store
    Document and chunk persistence.
retriever
    Similarity search over the store.
reranker
    LLM reranker channel.
relevance_filter
    Threshold / reranker / hybrid filtering.
types
    Protocols for the external collaborators.
"""

"""
Generation layer of the knowledge-base RAG pipeline.

This package turns retrieved chunks into prompts, calls the answering LLM and
inspects the citations in its answers.

Submodules
----------
prompt_builder
    Prompt template registry and the context assembler.
llm_interface
    Chat LLM interface and factory.
citations
    Citation parsing, validation and aggregate metrics.

Notes
-----
Default prompt templates ship as ``prompts/default.json`` inside this package
and are loaded with ``pkg:knowledge_rag.generation:prompts/default.json``.
"""

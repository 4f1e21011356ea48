"""knowledge_rag.config

Configuration subsystem for the knowledge-base RAG system.

This package provides structured access to global and component-level
configuration loaded from YAML files, plus logging setup for entry points.

Modules
-------
global_config
    Global configuration loader and cached accessors.
logging
    Stream-handler setup for the package logger.
"""
from .global_config import GlobalConfig
from .logging import configure_logging, configure_logging_from_config

__all__ = ["GlobalConfig", "configure_logging", "configure_logging_from_config"]

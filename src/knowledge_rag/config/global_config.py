"""knowledge_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used by the indexing and query pipelines.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

import os
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml


def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    Parameters
    ----------
    obj : Any
        Object to expand. Dictionaries, lists and strings are walked; other
        types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with ``${VAR}`` patterns
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section(raw: dict, name: str, required: bool = False) -> dict:
    value = raw.get(name)
    if value is None:
        if required:
            raise KeyError(f"Missing '{name}' section in configuration.")
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(value).__name__}.")
    return value


def _positive_int(section: dict, name: str, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{name}.{key}' must be an integer, got {value!r}.")
    if value <= 0:
        raise ValueError(f"'{name}.{key}' must be positive, got {value}.")
    return value


def _unit_float(section: dict, name: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"'{name}.{key}' must be a number, got {value!r}.")
    if not 0.0 <= float(value) <= 1.0:
        raise ValueError(f"'{name}.{key}' must be in [0, 1], got {value}.")
    return float(value)


class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary (typically loaded from YAML)
    and exposes validated, cached accessors for each configuration section.
    Optional sections default to an empty mapping, which components interpret
    as "use defaults".

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict | None,
            config_path: Path | None = None,
        ):
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise TypeError(f"Configuration root must be a mapping, got {type(raw).__name__}.")
        self.raw = raw
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f)
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    @property
    def base_dir(self) -> Path | None:
        """Directory of the loaded config file, if known."""
        return self.config_path.parent if self.config_path else None

    @cached_property
    def knowledge_base(self) -> dict:
        """Return the ``knowledge_base`` (store) section.

        Relative SQLite paths in ``database_url`` are resolved against the
        config file directory.
        """
        section = dict(_section(self.raw, "knowledge_base"))
        url = section.get("database_url")
        if url is not None and not isinstance(url, str):
            raise TypeError("'knowledge_base.database_url' must be a string.")
        prefix = "sqlite:///"
        if url and url.startswith(prefix) and self.base_dir is not None:
            db_path = url[len(prefix):]
            if db_path and db_path != ":memory:" and not Path(db_path).is_absolute():
                section["database_url"] = prefix + str((self.base_dir / db_path).resolve())
        return section

    @cached_property
    def chunking(self) -> dict:
        """Return the ``chunking`` section.

        Raises
        ------
        TypeError
            If ``chunk_size`` or ``overlap_size`` is not an integer.
        ValueError
            If ``chunk_size`` is not positive or ``overlap_size`` is negative.
        """
        section = _section(self.raw, "chunking")
        _positive_int(section, "chunking", "chunk_size", 800)
        overlap = section.get("overlap_size", section.get("overlap", 100))
        if isinstance(overlap, bool) or not isinstance(overlap, int):
            raise TypeError(f"'chunking.overlap_size' must be an integer, got {overlap!r}.")
        if overlap < 0:
            raise ValueError(f"'chunking.overlap_size' must be >= 0, got {overlap}.")
        return section

    @cached_property
    def tokenization(self) -> dict:
        return _section(self.raw, "tokenization")

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Raises
        ------
        KeyError
            If the section is missing.
        TypeError
            If the section or its ``retry`` sub-section is not a mapping.
        """
        section = _section(self.raw, "embedder", required=True)
        retry = section.get("retry")
        if retry is not None and not isinstance(retry, dict):
            raise TypeError("'embedder.retry' must be a mapping.")
        return section

    @cached_property
    def search(self) -> dict:
        """Return the ``search`` section (``top_k``, ``min_similarity``)."""
        section = _section(self.raw, "search")
        _positive_int(section, "search", "top_k", 5)
        _unit_float(section, "search", "min_similarity", 0.4)
        return section

    @cached_property
    def relevance_filter(self) -> dict:
        return _section(self.raw, "relevance_filter")

    @cached_property
    def generator_llm(self) -> dict:
        """Return the generator LLM configuration section.

        Raises
        ------
        KeyError
            If ``generator_llm`` is missing.
        """
        return _section(self.raw, "generator_llm", required=True)

    @cached_property
    def reranker_llm(self) -> dict:
        """Return the reranker LLM section, falling back to ``generator_llm``."""
        section = _section(self.raw, "reranker_llm")
        return section or self.generator_llm

    @cached_property
    def context(self) -> dict:
        """Return the ``context`` (prompt assembly) section.

        Raises
        ------
        ValueError
            If ``max_context_tokens`` is set and not positive.
        """
        section = _section(self.raw, "context")
        if section.get("max_context_tokens") is not None:
            _positive_int(section, "context", "max_context_tokens", 1)
        return section

    @cached_property
    def prompts(self) -> list[str]:
        """Return extra prompt template sources.

        Returns
        -------
        list[str]
            Sources as ``pkg:``/``file:`` strings or paths. Empty when not
            configured.

        Raises
        ------
        TypeError
            If ``prompts`` is neither a string nor a list of strings.
        """
        prompts = self.raw.get("prompts")
        if prompts is None:
            return []
        if isinstance(prompts, str):
            return [prompts]
        if isinstance(prompts, list) and all(isinstance(p, str) for p in prompts):
            return list(prompts)
        raise TypeError("'prompts' must be a string or a list of strings.")

    @cached_property
    def document_loader(self) -> dict:
        """Return the ``document_loader`` section.

        Raises
        ------
        TypeError
            If ``extensions`` is not a list of strings.
        """
        section = _section(self.raw, "document_loader")
        extensions = section.get("extensions")
        if extensions is not None:
            if not isinstance(extensions, list):
                raise TypeError("'document_loader.extensions' must be a list of strings.")
            for i, item in enumerate(extensions):
                if not isinstance(item, str):
                    raise TypeError(f"Extension #{i} must be a string.")
        return section

    @cached_property
    def logging(self) -> dict[str, Any]:
        return _section(self.raw, "logging")

"""knowledge_rag.common.tokenisation

Token counting utilities.

This module provides a small abstraction used by the chunker to size chunks
by *token count* without coupling it to any particular LLM provider or
tokenizer library. Besides counting, every counter reports the character
offset at which each token starts, which is what lets the chunker map a
token window back to a character span of the source text.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
HeuristicTokenCounter
    Lightweight, dependency-free approximate token counter.
TiktokenTokenCounter
    Exact token counter backed by the ``tiktoken`` library.
HuggingFaceTokenCounter
    Token counter backed by a Hugging Face tokenizer instance.

Functions
---------
create_token_counter
    Build a token counter from a ``tokenization`` configuration mapping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""

    def token_offsets(self, text: str) -> list[int]:
        """Return the character offset at which each token of ``text`` starts."""


@dataclass(frozen=True)
class HeuristicTokenCounter:
    """Dependency-free, approximate token counter.

    Treats every run of ``chars_per_token`` characters as one token. With
    ``chars_per_token=1`` a token is exactly one character, which makes chunk
    boundaries easy to reason about in tests.

    Attributes
    ----------
    chars_per_token : int
        Approximate number of characters per token. Defaults to ``4``.
    """

    chars_per_token: int = 4

    def _cpt(self) -> int:
        return max(1, int(self.chars_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        cpt = self._cpt()
        return -(-len(text) // cpt)

    def token_offsets(self, text: str) -> list[int]:
        if not text:
            return []
        return list(range(0, len(text), self._cpt()))


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Token counter backed by the ``tiktoken`` library.

    Attributes
    ----------
    encoding_name : str
        Name of the ``tiktoken`` encoding.
    _enc : Any
        Internal ``tiktoken`` encoding object.
    """

    encoding_name: str
    _enc: Any

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        """Construct a token counter from an encoding name.

        Parameters
        ----------
        encoding_name : str
            Name of the ``tiktoken`` encoding to load.

        Returns
        -------
        TiktokenTokenCounter
            A token counter initialised with the requested encoding.
        """
        import tiktoken  # type: ignore

        enc = tiktoken.get_encoding(encoding_name)
        return cls(encoding_name=encoding_name, _enc=enc)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text))

    def token_offsets(self, text: str) -> list[int]:
        if not text:
            return []
        toks = self._enc.encode(text)
        _, offsets = self._enc.decode_with_offsets(toks)
        return list(offsets)


@dataclass(frozen=True)
class HuggingFaceTokenCounter:
    """Token counter backed by a Hugging Face tokenizer.

    The tokenizer must be a "fast" tokenizer so that offset mappings are
    available. The ``transformers`` library is not imported at module import
    time.

    Attributes
    ----------
    tokenizer : Any
        Hugging Face tokenizer instance.
    """

    tokenizer: Any

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.tokenizer.encode(text, add_special_tokens=False))

    def token_offsets(self, text: str) -> list[int]:
        if not text:
            return []
        enc = self.tokenizer(text, add_special_tokens=False, return_offsets_mapping=True)
        return [start for start, _ in enc["offset_mapping"]]


def create_token_counter(config: Mapping[str, Any] | None = None) -> TokenCounter:
    """Create a token counter from a ``tokenization`` configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any] or None
        Mapping with a ``type`` key (``heuristic``, ``tiktoken`` or
        ``huggingface``) and type-specific options. ``None`` or an empty
        mapping selects the heuristic counter.

    Returns
    -------
    TokenCounter
        Configured token counter.

    Raises
    ------
    ValueError
        If the type is unknown or a required option is missing.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type") or "heuristic").lower().replace("-", "_")

    if kind in {"heuristic", "char", "chars"}:
        cpt = cfg.get("chars_per_token", 4)
        try:
            cpt = int(cpt)
        except (TypeError, ValueError):
            raise ValueError(f"tokenization.chars_per_token must be an integer, got {cpt!r}")
        return HeuristicTokenCounter(chars_per_token=cpt)

    if kind in {"tiktoken", "openai", "openai_like"}:
        enc = cfg.get("encoding") or "cl100k_base"
        return TiktokenTokenCounter.from_encoding_name(str(enc))

    if kind in {"huggingface", "hf", "transformers"}:
        model_name = cfg.get("model_name")
        if not model_name:
            raise ValueError("tokenization.model_name is required for huggingface tokenization")

        from transformers import AutoTokenizer  # type: ignore

        tok = AutoTokenizer.from_pretrained(str(model_name), use_fast=True)
        return HuggingFaceTokenCounter(tokenizer=tok)

    raise ValueError(f"Unknown tokenization type: {kind!r}")


__all__ = [
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenTokenCounter",
    "HuggingFaceTokenCounter",
    "create_token_counter",
]

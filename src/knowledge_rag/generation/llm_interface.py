"""knowledge_rag.generation.llm_interface

Interface and factory for chat LLM backends.

This module defines a small, provider-agnostic abstraction over a LangChain
chat model. The RAG pipeline uses it to answer a question from an assembled
system prompt and user message, and the LLM reranker uses it to score
candidate chunks.

Classes
-------
GeneratedAnswer
    Answer text plus the number of tokens the call consumed.
BaseLLM
    Abstract interface used by the pipeline and the reranker.
OpenAIChatLikeLLM
    Chat completions via an OpenAI-compatible API using ``langchain_openai``.

Functions
---------
create_llm
    Construct an LLM implementation from a configuration mapping.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedAnswer:
    answer_text: str
    tokens_used: int = 0


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Some providers return a list of content parts.
        return "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in content)
    return str(content)


def _tokens_used(response: Any) -> int:
    usage = getattr(response, "usage_metadata", None) or {}
    if usage.get("total_tokens") is not None:
        return int(usage["total_tokens"])
    meta = getattr(response, "response_metadata", None) or {}
    token_usage = meta.get("token_usage") or {}
    return int(token_usage.get("total_tokens") or 0)


class BaseLLM(ABC):
    """Abstract interface for chat LLM generation.

    Concrete implementations wrap a LangChain chat model and expose
    :meth:`generate` for single prompts and :meth:`generate_answer` for
    system-plus-user exchanges.
    """

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: dict,
            callback_manager: BaseCallbackHandler = None
        ) -> "BaseLLM":
        """Create an LLM instance from a configuration mapping.

        Raises
        ------
        ValueError
            If required configuration keys are missing or invalid.
        """

    @abstractmethod
    def get_llm(self) -> Any:
        """Return the underlying LangChain chat model."""

    def generate(self, prompt: str, **kwargs) -> str:
        """Send a single user prompt and return the reply text."""
        response = self.get_llm().invoke([HumanMessage(content=prompt)], **kwargs)
        return _message_text(response)

    def generate_answer(self, system_prompt: str, user_message: str, **kwargs) -> GeneratedAnswer:
        """Answer ``user_message`` under ``system_prompt``.

        Parameters
        ----------
        system_prompt : str
            Instructions and (optionally) retrieved context.
        user_message : str
            The wrapped user question.
        **kwargs
            Forwarded to the chat model's ``invoke``.

        Returns
        -------
        GeneratedAnswer
            Reply text and total tokens reported by the provider (``0`` when
            the provider does not report usage).
        """
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_message)]
        response = self.get_llm().invoke(messages, **kwargs)
        return GeneratedAnswer(answer_text=_message_text(response).strip(), tokens_used=_tokens_used(response))


class OpenAIChatLikeLLM(BaseLLM):
    """LLM interface using an OpenAI-compatible Chat Completions API.

    Wraps :class:`langchain_openai.ChatOpenAI`. Keyword names for the model,
    base URL and key are resolved against the installed ``ChatOpenAI``
    signature so older and newer ``langchain_openai`` releases both work.

    Parameters
    ----------
    model_name : str
        Model identifier (e.g., ``"gpt-4o-mini"``).
    api_base : str or None
        Base URL of the OpenAI-compatible API. ``None`` uses the client default.
    api_key : str, optional
        API key. Defaults to ``"fake"`` for local deployments.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.
    **model_kwargs : Any
        Extra keyword arguments for ``ChatOpenAI`` (``temperature``,
        ``max_tokens``, ...).
    """

    def __init__(
        self,
        model_name: str,
        api_base: str | None = None,
        api_key: str = "fake",
        callback_manager: BaseCallbackHandler = None,
        **model_kwargs: Any,
    ):
        self.model_name = model_name
        self.api_base = api_base
        self.model_kwargs = dict(model_kwargs)

        sig = inspect.signature(ChatOpenAI)
        init_kwargs: dict[str, Any] = dict(model_kwargs)

        if "model" in sig.parameters:
            init_kwargs["model"] = model_name
        else:
            init_kwargs["model_name"] = model_name

        if api_base:
            if "base_url" in sig.parameters:
                init_kwargs["base_url"] = api_base
            else:
                init_kwargs["openai_api_base"] = api_base

        if api_key is not None:
            if "api_key" in sig.parameters:
                init_kwargs["api_key"] = api_key
            else:
                init_kwargs["openai_api_key"] = api_key

        if callback_manager is not None:
            init_kwargs["callbacks"] = [callback_manager]

        self.llm = ChatOpenAI(**init_kwargs)

    @classmethod
    def from_config_dict(
        cls,
        config: dict,
        callback_manager: BaseCallbackHandler = None,
    ) -> "OpenAIChatLikeLLM":
        model_name = config.get("model_name") or config.get("model")
        if not model_name:
            raise ValueError("LLM config requires 'model_name'.")
        return cls(
            model_name=model_name,
            api_base=config.get("api_base"),
            api_key=config.get("api_key", "fake"),
            callback_manager=callback_manager,
            **dict(config.get("model_kwargs") or {}),
        )

    def get_llm(self) -> Any:
        return self.llm


def _get_llm_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider``/``backend``/``impl`` value."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_llm_kind(kind: str) -> str:
    """Normalise an LLM kind string to a registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    the various spellings of an OpenAI-compatible chat backend collapse to
    ``"openai_chat"``.
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    for alias in (
        "open_ai_chat_like",
        "open_aichat_like",
        "openai_chat_like",
        "openai_chatlike",
        "open_ai_chatlike",
        "chat_openai",
        "chatopenai",
    ):
        k2 = k2.replace(alias, "openai_chat")
    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    return k2


def create_llm(config: Mapping[str, Any], callback_manager: Optional[BaseCallbackHandler] = None) -> BaseLLM:
    """Create an LLM implementation from a configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any]
        LLM configuration section (``generator_llm`` or ``reranker_llm``).
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.

    Returns
    -------
    BaseLLM
        An initialised LLM implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator is missing or selects an unsupported backend.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_llm expected a mapping/dict, got {type(config)}")

    kind_raw = _get_llm_kind(config)
    kind = _normalize_llm_kind(kind_raw)

    if not kind:
        raise ValueError(
            "LLM config is missing a discriminator field (type/kind/provider/etc.). "
            "Add e.g. type: openai_chat."
        )

    registry: dict[str, type[BaseLLM]] = {
        "openai_chat": OpenAIChatLikeLLM,
        "openai_like": OpenAIChatLikeLLM,
        "openai": OpenAIChatLikeLLM,
    }

    cls = registry.get(kind)
    if cls is None:
        raise ValueError(
            f"Unknown LLM kind '{kind_raw}' (normalized to '{kind}'). Supported kinds: {sorted(registry.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "GeneratedAnswer",
    "BaseLLM",
    "OpenAIChatLikeLLM",
    "create_llm",
]

"""knowledge_rag.retrieval.embedder

Embedding interfaces, provider adapters and the retrying embedding service.

Provider adapters wrap LlamaIndex embedding classes behind a small
:class:`BaseEmbedder` interface. The indexing and query paths never call an
adapter directly: they go through :class:`EmbeddingService`, which validates
input and retries transient provider failures with a bounded exponential
backoff before raising
:class:`~knowledge_rag.common.exceptions.EmbeddingGenerationError`.

Classes
-------
BaseEmbedder
    Abstract interface over a provider-specific embedding model.
HuggingFaceEmbedder
    Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.
RetryPolicy
    Attempt ceiling and delay schedule for embedding calls.
EmbeddingService
    Validating, retrying front end used by the pipelines.

Functions
---------
create_embedder
    Create an embedder implementation from a configuration mapping.
create_embedding_service
    Create an :class:`EmbeddingService` (adapter plus retry policy) from configuration.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from langchain_core.callbacks import BaseCallbackHandler
from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding

from knowledge_rag.common.exceptions import EmbeddingGenerationError

logger = logging.getLogger(__name__)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a provider-specific embedder and expose
    :meth:`embed_query` / :meth:`embed_documents`.
    """

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """Return the underlying embedding object."""

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration mapping.
        callback_manager : BaseCallbackHandler, optional
            Optional callback handler for logging/telemetry.

        Returns
        -------
        BaseEmbedder
            An initialised embedder implementation.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """

    def embed_query(self, query: str) -> list[float]:
        """Embed a single string.

        Tries the common method names of the wrapped embedder in order:
        ``embed_query``, ``get_text_embedding``, ``embed_documents``, ``embed``.

        Raises
        ------
        AttributeError
            If no compatible embedding method is available.
        """
        embedder = self.get_embedder()
        for method in ("embed_query", "get_text_embedding", "embed_documents", "embed"):
            if hasattr(embedder, method):
                fn = getattr(embedder, method)
                if method == "embed_documents":
                    return fn([query])[0]
                return fn(query)

        raise AttributeError(f"No embedding method found on {embedder!r}")

    def embed_documents(self, documents: list[str]) -> list[list[float]]:
        """Embed several strings, natively batched when the provider supports it."""
        embedder = self.get_embedder()

        if hasattr(embedder, "get_text_embedding_batch"):
            return embedder.get_text_embedding_batch(documents)
        if hasattr(embedder, "embed_documents"):
            return embedder.embed_documents(documents)

        return [self.embed_query(doc) for doc in documents]


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by :class:`llama_index.embeddings.huggingface.HuggingFaceEmbedding`.

    Parameters
    ----------
    model_name : str
        Name or path of the embedding model.
    device : str
        Device identifier (e.g., ``"cuda"``, ``"cpu"``, ``"mps"``).
    trust_remote_code : bool, optional
        Whether to allow custom model code from the Hugging Face Hub.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded to the model.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: str = "cpu",
            trust_remote_code: bool = False,
            callback_manager: BaseCallbackHandler = None,
            model_kwargs: dict[str, Any] = None,
        ):
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.model_name = model_name
        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            callback_manager=callback_manager,
            model_kwargs=model_kwargs or {},
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "HuggingFaceEmbedder":
        return cls(
            model_name=config["model_name"],
            device=config.get("device", "cpu"),
            trust_remote_code=_as_bool(config.get("trust_remote_code"), False),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs", {}),
        )


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API.

    Wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`. The
    client's own retries are disabled by default (``max_retries=0``) so that
    :class:`EmbeddingService` owns the retry schedule.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL of the OpenAI-compatible API.
    api_key : str, optional
        API key, if the endpoint requires one.
    timeout : float, optional
        Request timeout in seconds.
    embed_batch_size : int, optional
        Batch size for multi-text requests.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: str = None,
            callback_manager: BaseCallbackHandler = None,
            model_kwargs: dict[str, Any] = None,
            timeout: float = 60.0,
            max_retries: int = 0,
            embed_batch_size: int = 10,
            num_workers: Optional[int] = None,
            reuse_client: bool = True,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.model_name = model_name
        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            callback_manager=callback_manager,
            additional_kwargs=model_kwargs or {},
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=embed_batch_size,
            num_workers=num_workers,
            reuse_client=reuse_client,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: BaseCallbackHandler = None
        ) -> "OpenAILikeEmbedder":
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", config.get("request_timeout", 60.0))),
            max_retries=int(config.get("client_max_retries", 0)),
            embed_batch_size=int(config.get("embed_batch_size", 10)),
            num_workers=config.get("num_workers"),
            reuse_client=_as_bool(config.get("reuse_client"), True),
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for embedding calls.

    The delay before retry ``n`` (0-based) is
    ``min(base_delay * 2 ** n, max_delay)`` seconds.

    Attributes
    ----------
    max_attempts : int
        Total number of attempts, including the first. Defaults to ``8``.
    base_delay : float
        Delay before the first retry, in seconds. Defaults to ``2.0``.
    max_delay : float
        Ceiling on any single delay, in seconds. Defaults to ``30.0``.
    """

    max_attempts: int = 8
    base_delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"retry.max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "RetryPolicy":
        cfg = dict(config or {})
        return cls(
            max_attempts=int(cfg.get("max_attempts", cfg.get("max_retries", 8))),
            base_delay=float(cfg.get("base_delay", 2.0)),
            max_delay=float(cfg.get("max_delay", 30.0)),
        )


class EmbeddingService:
    """Validating, retrying front end over a :class:`BaseEmbedder`.

    Transient failures (any exception not listed in ``permanent_errors``) are
    retried according to ``retry_policy``. Permanent failures are raised
    immediately. Either way the caller sees an
    :class:`~knowledge_rag.common.exceptions.EmbeddingGenerationError`.

    Parameters
    ----------
    embedder : BaseEmbedder
        Provider adapter.
    retry_policy : RetryPolicy or None, optional
        Retry schedule. Defaults to :class:`RetryPolicy()`.
    sleep : Callable[[float], None], optional
        Sleep function, replaceable in tests.
    permanent_errors : tuple[type[BaseException], ...], optional
        Exception types that are never retried.
    """

    def __init__(
            self,
            embedder: BaseEmbedder,
            *,
            retry_policy: RetryPolicy | None = None,
            sleep: Callable[[float], None] = time.sleep,
            permanent_errors: tuple[type[BaseException], ...] = (ValueError, TypeError),
        ):
        self.embedder = embedder
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self.permanent_errors = permanent_errors

    def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises
        ------
        ValueError
            If ``text`` is empty or whitespace-only.
        EmbeddingGenerationError
            If the provider fails permanently or retries are exhausted.
        """
        if not text or not text.strip():
            raise ValueError("Text to embed cannot be blank")

        vector = self._with_retry(lambda: self.embedder.embed_query(text))
        return self._validate(vector)

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed several texts in one provider call (retried as a unit)."""
        texts = list(texts)
        if not texts:
            return []
        for t in texts:
            if not t or not t.strip():
                raise ValueError("Text to embed cannot be blank")

        vectors = self._with_retry(lambda: self.embedder.embed_documents(texts))
        if len(vectors) != len(texts):
            raise EmbeddingGenerationError(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        return [self._validate(v) for v in vectors]

    def check_health(self) -> bool:
        """Return ``True`` if a single, unretried test embedding succeeds."""
        try:
            vector = self.embedder.embed_query("health check")
        except Exception as e:
            logger.warning("Embedding provider health check failed: %s", e)
            return False
        return bool(vector)

    def _validate(self, vector: Any) -> list[float]:
        try:
            out = [float(x) for x in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingGenerationError(f"Provider returned a non-numeric embedding: {e}") from e
        if not out:
            raise EmbeddingGenerationError("Provider returned an empty embedding")
        return out

    def _with_retry(self, call: Callable[[], Any]) -> Any:
        policy = self.retry_policy
        last_error: BaseException | None = None

        for attempt in range(policy.max_attempts):
            try:
                return call()
            except self.permanent_errors as e:
                raise EmbeddingGenerationError(
                    f"Embedding request rejected: {e}", attempts=attempt + 1
                ) from e
            except Exception as e:
                last_error = e
                if attempt + 1 >= policy.max_attempts:
                    break
                delay = policy.delay_for(attempt)
                logger.warning(
                    "Embedding attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt + 1,
                    policy.max_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)

        raise EmbeddingGenerationError(
            f"Failed to generate embedding after {policy.max_attempts} attempts: {last_error}",
            attempts=policy.max_attempts,
        ) from last_error


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider``/``backend``/``impl`` value."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind string to a registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    spellings of "OpenAI-like" collapse to ``"openai_like"``.
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

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    k2 = k2.replace("hugging_face", "huggingface")
    return k2


def create_embedder(
    config: Mapping[str, Any],
    callback_manager: Optional[BaseCallbackHandler] = None,
) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    Parameters
    ----------
    config : Mapping[str, Any]
        The ``embedder`` configuration section.
    callback_manager : BaseCallbackHandler, optional
        Optional callback handler.

    Returns
    -------
    BaseEmbedder
        An initialised embedder. Defaults to :class:`HuggingFaceEmbedder` when
        no discriminator is given.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry: dict[str, type[BaseEmbedder]] = {
        "huggingface": HuggingFaceEmbedder,
        "hf": HuggingFaceEmbedder,
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
    }

    cls = registry.get(kind) if kind else HuggingFaceEmbedder
    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


def create_embedding_service(
    config: Mapping[str, Any],
    *,
    embedder: BaseEmbedder | None = None,
) -> EmbeddingService:
    """Create an :class:`EmbeddingService` from the ``embedder`` section.

    The optional nested ``retry`` mapping configures :class:`RetryPolicy`.
    An explicit ``embedder`` skips adapter construction.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedding_service expected a mapping/dict, got {type(config)}")

    policy = RetryPolicy.from_config_dict(config.get("retry"))
    adapter = embedder if embedder is not None else create_embedder(config)
    return EmbeddingService(adapter, retry_policy=policy)


__all__ = [
    "BaseEmbedder",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "RetryPolicy",
    "EmbeddingService",
    "create_embedder",
    "create_embedding_service",
]

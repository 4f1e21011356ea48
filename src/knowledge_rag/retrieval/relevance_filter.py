"""knowledge_rag.retrieval.relevance_filter

Post-search relevance filtering.

A single :class:`RelevanceFilter` applies one of four policies to the ranked
chunks returned by search, selected by :class:`FilterType`:

- ``none``: pass everything through;
- ``threshold``: drop chunks below a similarity floor, optionally keeping only
  the top ``keep_top``;
- ``reranker``: reorder by an LLM relevance score and keep ``max_chunks``;
- ``hybrid``: ``threshold`` then ``reranker`` on the survivors.

When the reranker cannot produce any scores the filter keeps the
pre-rerank ordering instead of returning nothing. Every call also reports
:class:`FilterStats` describing what was dropped and why.

Classes
-------
FilterType
    Closed set of filter policies.
ThresholdSettings
    Parameters of the threshold stage.
RerankerSettings
    Parameters of the reranker stage.
RelevanceFilterConfig
    Full filter configuration.
DroppedChunk
    Record of a chunk removed by the filter.
RerankDecision
    The reranker's verdict on one chunk.
FilterStats
    Summary of one filter application.
FilterResult
    Kept chunks plus their statistics.
RelevanceFilter
    Applies the configured policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from knowledge_rag.common.exceptions import RerankerUnavailable
from knowledge_rag.common.schemas import RetrievedChunk
from knowledge_rag.retrieval.types import RerankerChannel

logger = logging.getLogger(__name__)


class FilterType(str, Enum):
    NONE = "none"
    THRESHOLD = "threshold"
    RERANKER = "reranker"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Any) -> "FilterType":
        if isinstance(value, FilterType):
            return value
        key = str(value or "").strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(
            f"Unknown relevance filter type {value!r}. Supported: {[m.value for m in cls]}."
        )


@dataclass(frozen=True)
class ThresholdSettings:
    min_similarity: float = 0.6
    keep_top: int | None = None

    def __post_init__(self):
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError(f"threshold.min_similarity must be in [0, 1], got {self.min_similarity}")
        if self.keep_top is not None and self.keep_top <= 0:
            raise ValueError(f"threshold.keep_top must be positive, got {self.keep_top}")


@dataclass(frozen=True)
class RerankerSettings:
    max_chunks: int = 6
    min_score: float | None = None

    def __post_init__(self):
        if self.max_chunks <= 0:
            raise ValueError(f"reranker.max_chunks must be positive, got {self.max_chunks}")


@dataclass(frozen=True)
class RelevanceFilterConfig:
    """Configuration of the relevance filter.

    Attributes
    ----------
    type : FilterType
        Policy to apply. Defaults to ``threshold``.
    enabled : bool
        When ``False`` the filter behaves as ``none`` regardless of ``type``.
    threshold : ThresholdSettings
        Threshold stage parameters.
    reranker : RerankerSettings
        Reranker stage parameters.
    """

    type: FilterType = FilterType.THRESHOLD
    enabled: bool = True
    threshold: ThresholdSettings = field(default_factory=ThresholdSettings)
    reranker: RerankerSettings = field(default_factory=RerankerSettings)

    @property
    def effective_type(self) -> FilterType:
        return self.type if self.enabled else FilterType.NONE

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "RelevanceFilterConfig":
        """Build a configuration from the ``relevance_filter`` section.

        Raises
        ------
        ValueError
            If the type is unknown or a numeric parameter is out of range.
        TypeError
            If a nested section is not a mapping.
        """
        cfg = dict(config or {})
        threshold_cfg = cfg.get("threshold") or {}
        reranker_cfg = cfg.get("reranker") or {}
        if not isinstance(threshold_cfg, Mapping):
            raise TypeError("'relevance_filter.threshold' must be a mapping.")
        if not isinstance(reranker_cfg, Mapping):
            raise TypeError("'relevance_filter.reranker' must be a mapping.")

        keep_top = threshold_cfg.get("keep_top")
        min_score = reranker_cfg.get("min_score")
        return cls(
            type=FilterType.parse(cfg.get("type", FilterType.THRESHOLD.value)),
            enabled=bool(cfg.get("enabled", True)),
            threshold=ThresholdSettings(
                min_similarity=float(threshold_cfg.get("min_similarity", 0.6)),
                keep_top=int(keep_top) if keep_top is not None else None,
            ),
            reranker=RerankerSettings(
                max_chunks=int(reranker_cfg.get("max_chunks", 6)),
                min_score=float(min_score) if min_score is not None else None,
            ),
        )


@dataclass(frozen=True)
class DroppedChunk:
    chunk_id: str
    document_file_path: str | None
    similarity: float
    reason: str


@dataclass(frozen=True)
class RerankDecision:
    chunk_id: str
    rerank_score: float | None
    used: bool


@dataclass
class FilterStats:
    """Summary of one filter application.

    Attributes
    ----------
    filter_type : FilterType
        Policy that was applied.
    retrieved : int
        Number of candidate chunks received.
    kept : int
        Number of chunks returned.
    dropped : list[DroppedChunk]
        Chunks removed, with reasons.
    avg_similarity_before : float
        Mean similarity of the candidates (``0.0`` if none).
    avg_similarity_after : float
        Mean similarity of the kept chunks (``0.0`` if none).
    reranker_fallback : bool
        ``True`` when the reranker was unavailable and the pre-rerank ordering
        was kept.
    rerank_decisions : list[RerankDecision]
        Reranker verdicts, when the reranker ran.
    """

    filter_type: FilterType
    retrieved: int
    kept: int
    dropped: list[DroppedChunk] = field(default_factory=list)
    avg_similarity_before: float = 0.0
    avg_similarity_after: float = 0.0
    reranker_fallback: bool = False
    rerank_decisions: list[RerankDecision] = field(default_factory=list)


@dataclass
class FilterResult:
    chunks: list[RetrievedChunk]
    stats: FilterStats


def _mean_similarity(chunks: Sequence[RetrievedChunk]) -> float:
    if not chunks:
        return 0.0
    return sum(c.similarity for c in chunks) / len(chunks)


def _dropped(chunk: RetrievedChunk, reason: str) -> DroppedChunk:
    return DroppedChunk(
        chunk_id=chunk.chunk_id,
        document_file_path=chunk.document_file_path,
        similarity=chunk.similarity,
        reason=reason,
    )


class RelevanceFilter:
    """Apply the configured relevance policy to retrieved chunks.

    Parameters
    ----------
    config : RelevanceFilterConfig or None, optional
        Filter configuration. Defaults to a threshold filter at ``0.6``.
    reranker : RerankerChannel or None, optional
        Reranker channel. Required for the ``reranker`` and ``hybrid`` types.

    Raises
    ------
    ValueError
        If a reranker-based policy is configured without a reranker channel.
    """

    def __init__(
        self,
        config: RelevanceFilterConfig | None = None,
        reranker: RerankerChannel | None = None,
    ) -> None:
        self.config = config or RelevanceFilterConfig()
        self.reranker = reranker
        if self.config.effective_type in (FilterType.RERANKER, FilterType.HYBRID) and reranker is None:
            raise ValueError(
                f"Relevance filter type {self.config.type.value!r} requires a reranker channel."
            )

    @classmethod
    def from_config_dict(
        cls,
        config: Mapping[str, Any] | None,
        reranker: RerankerChannel | None = None,
    ) -> "RelevanceFilter":
        return cls(RelevanceFilterConfig.from_config_dict(config), reranker=reranker)

    def apply(self, question: str, chunks: Sequence[RetrievedChunk]) -> FilterResult:
        """Filter ``chunks`` for ``question``.

        Parameters
        ----------
        question : str
            The user question (used by the reranker).
        chunks : Sequence[RetrievedChunk]
            Candidates in search order.

        Returns
        -------
        FilterResult
            Kept chunks in their final order and the run's statistics.
        """
        candidates = list(chunks)
        filter_type = self.config.effective_type
        dropped: list[DroppedChunk] = []
        decisions: list[RerankDecision] = []
        fallback = False

        if filter_type is FilterType.NONE:
            kept = candidates
        elif filter_type is FilterType.THRESHOLD:
            kept = self._apply_threshold(candidates, dropped)
        elif filter_type is FilterType.RERANKER:
            kept, fallback = self._apply_reranker(question, candidates, dropped, decisions)
        elif filter_type is FilterType.HYBRID:
            survivors = self._apply_threshold(candidates, dropped)
            kept, fallback = self._apply_reranker(question, survivors, dropped, decisions)
        else:
            raise ValueError(f"Unhandled relevance filter type {filter_type!r}")

        stats = FilterStats(
            filter_type=filter_type,
            retrieved=len(candidates),
            kept=len(kept),
            dropped=dropped,
            avg_similarity_before=_mean_similarity(candidates),
            avg_similarity_after=_mean_similarity(kept),
            reranker_fallback=fallback,
            rerank_decisions=decisions,
        )
        logger.debug(
            "Relevance filter %s kept %d/%d chunks",
            filter_type.value,
            stats.kept,
            stats.retrieved,
        )
        return FilterResult(chunks=kept, stats=stats)

    def _apply_threshold(
        self,
        chunks: list[RetrievedChunk],
        dropped: list[DroppedChunk],
    ) -> list[RetrievedChunk]:
        settings = self.config.threshold
        passed: list[RetrievedChunk] = []
        for c in chunks:
            if c.similarity >= settings.min_similarity:
                passed.append(c)
            else:
                dropped.append(
                    _dropped(c, f"similarity {c.similarity:.2f} < threshold {settings.min_similarity:.2f}")
                )

        if settings.keep_top is not None and len(passed) > settings.keep_top:
            passed = sorted(passed, key=lambda c: -c.similarity)
            for c in passed[settings.keep_top :]:
                dropped.append(_dropped(c, "keep_top limit"))
            passed = passed[: settings.keep_top]

        return passed

    def _apply_reranker(
        self,
        question: str,
        chunks: list[RetrievedChunk],
        dropped: list[DroppedChunk],
        decisions: list[RerankDecision],
    ) -> tuple[list[RetrievedChunk], bool]:
        if not chunks:
            return [], False

        settings = self.config.reranker
        try:
            scores = self.reranker.score(question, [c.content for c in chunks])
            if len(scores) != len(chunks):
                raise RerankerUnavailable(
                    f"Reranker returned {len(scores)} scores for {len(chunks)} chunks"
                )
            if all(s is None for s in scores):
                raise RerankerUnavailable("Reranker scored none of the chunks")
        except RerankerUnavailable as e:
            logger.warning("Reranker unavailable, keeping similarity ordering: %s", e)
            return chunks, True
        except Exception as e:
            logger.warning("Reranker channel failed (%s), keeping similarity ordering: %s", type(e).__name__, e)
            return chunks, True

        scored: list[tuple[float, int, RetrievedChunk]] = []
        for position, (chunk, score) in enumerate(zip(chunks, scores)):
            if score is None:
                dropped.append(_dropped(chunk, "not scored by reranker"))
            elif settings.min_score is not None and score < settings.min_score:
                dropped.append(_dropped(chunk, f"rerank score {score:.2f} < min {settings.min_score:.2f}"))
            else:
                scored.append((score, position, chunk.with_rerank_score(score)))

        scored.sort(key=lambda t: (-t[0], t[1]))
        kept = [c for _, _, c in scored[: settings.max_chunks]]
        for _, _, c in scored[settings.max_chunks :]:
            dropped.append(_dropped(c, "max_chunks limit"))

        kept_ids = {c.chunk_id for c in kept}
        decisions.extend(
            RerankDecision(chunk_id=c.chunk_id, rerank_score=s, used=c.chunk_id in kept_ids)
            for c, s in zip(chunks, scores)
        )
        return kept, False


__all__ = [
    "FilterType",
    "ThresholdSettings",
    "RerankerSettings",
    "RelevanceFilterConfig",
    "DroppedChunk",
    "RerankDecision",
    "FilterStats",
    "FilterResult",
    "RelevanceFilter",
]

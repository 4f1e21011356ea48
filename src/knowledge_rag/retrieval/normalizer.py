"""knowledge_rag.retrieval.normalizer

Vector normalisation and similarity scoring.

Embeddings are L2-normalised before they are stored or compared, so that a
plain dot product between two vectors equals their cosine similarity. The
cosine value (range ``[-1, 1]``) is then rescaled into a ``[0, 1]``
similarity score for callers.

Classes
-------
VectorNormalizer
    L2 normalisation and cosine-to-score conversion backed by ``numpy``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class VectorNormalizer:
    """L2 normaliser for embedding vectors.

    Attributes
    ----------
    tolerance : float
        Vectors whose norm is within ``tolerance`` of ``1.0`` are treated as
        already normalised and returned unchanged.
    """

    tolerance: float = 1e-6

    @staticmethod
    def norm(vector: Sequence[float]) -> float:
        return float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))

    def is_degenerate(self, vector: Sequence[float]) -> bool:
        """Return ``True`` for an empty or zero-norm vector."""
        return len(vector) == 0 or self.norm(vector) == 0.0

    def normalize(self, raw: Sequence[float]) -> list[float]:
        """Scale ``raw`` to unit L2 length.

        A zero-norm vector is returned unchanged; use :meth:`is_degenerate`
        to detect it.

        Parameters
        ----------
        raw : Sequence[float]
            Embedding as produced by the provider.

        Returns
        -------
        list[float]
            Unit-length vector, or ``raw`` itself (as a list) when it is
            degenerate or already unit-length.
        """
        arr = np.asarray(raw, dtype=np.float64)
        n = float(np.linalg.norm(arr))
        if n == 0.0 or abs(n - 1.0) <= self.tolerance:
            return [float(x) for x in raw]
        return (arr / n).tolist()

    @staticmethod
    def dot(a: Sequence[float], b: Sequence[float]) -> float:
        return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))

    @staticmethod
    def to_score(dot: float) -> float:
        """Map a cosine similarity in ``[-1, 1]`` to a score in ``[0, 1]``."""
        score = (float(dot) + 1.0) / 2.0
        return min(1.0, max(0.0, score))

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        """Return the ``[0, 1]`` score of two already-normalised vectors."""
        return self.to_score(self.dot(a, b))


__all__ = ["VectorNormalizer"]

"""Cosine-similarity scoring and bounded top-K ranking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

import numpy as np

from knowledge_hub.errors import CandidateSetTooLarge, TopKExceeded

T = TypeVar("T")

MAX_CANDIDATES = 1000
MAX_TOP_K = 100


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in ``[-1, 1]``.

    A zero vector is similar to nothing (score ``0.0``).
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.size} != {vb.size})")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


@dataclass(frozen=True)
class Ranked(Generic[T]):
    """A scored candidate; ``index`` is its position in the input list."""

    item: T
    score: float
    index: int


class SimilarityRanker:
    """Score candidates against a query vector and keep the best ``top_k``.

    No threshold is applied; negative or low scores are still returned if
    they make the cut.
    """

    def __init__(self, *, max_candidates: int = MAX_CANDIDATES, max_top_k: int = MAX_TOP_K) -> None:
        self.max_candidates = max_candidates
        self.max_top_k = max_top_k

    def check(self, candidate_count: int, top_k: int) -> None:
        """Raise before any embedding work if the request is out of bounds."""
        if candidate_count > self.max_candidates:
            raise CandidateSetTooLarge(candidate_count, self.max_candidates)
        if not 1 <= top_k <= self.max_top_k:
            raise TopKExceeded(top_k, self.max_top_k)

    def rank(
        self,
        query: Sequence[float],
        candidates: Sequence[tuple[T, Sequence[float]]],
        top_k: int,
    ) -> list[Ranked[T]]:
        """Return the ``top_k`` best ``(item, vector)`` pairs, best first.

        Ties keep the candidates' original order.
        """
        self.check(len(candidates), top_k)
        if not candidates:
            return []

        matrix = np.asarray([vector for _, vector in candidates], dtype=np.float64)
        q = np.asarray(query, dtype=np.float64)
        if matrix.shape[1] != q.size:
            raise ValueError(f"Query has {q.size} dimensions, candidates have {matrix.shape[1]}")
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms == 0.0, 0.0, (matrix @ q) / norms)
        scores = np.clip(scores, -1.0, 1.0)

        # argsort(kind="stable") on the negated scores keeps input order for ties.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [Ranked(item=candidates[i][0], score=float(scores[i]), index=int(i)) for i in order]

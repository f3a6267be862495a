"""Cosine similarity and top-K selection."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple, TypeVar

import numpy as np

DEFAULT_TOP_K = 5
DEFAULT_THRESHOLD = 0.3

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors.

    Vectors of different length and zero-magnitude vectors score 0.0.
    """
    if len(a) != len(b):
        return 0.0

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    dot = float(np.dot(left, right))
    magnitude = float(np.sqrt(np.dot(left, left)) * np.sqrt(np.dot(right, right)))
    if magnitude == 0.0:
        return 0.0
    return dot / magnitude


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Score every row of ``matrix`` against ``query``.

    Rows must share the query's dimension. Zero-magnitude rows score 0.0.
    """
    vectors = np.asarray(matrix, dtype=np.float64)
    if vectors.size == 0:
        return np.zeros(len(vectors), dtype=np.float64)

    target = np.asarray(query, dtype=np.float64)
    dots = vectors @ target
    magnitudes = np.linalg.norm(vectors, axis=1) * np.linalg.norm(target)
    scores = np.zeros_like(dots)
    np.divide(dots, magnitudes, out=scores, where=magnitudes != 0)
    return scores


def select_top_k(
    scored: Iterable[Tuple[T, float]],
    *,
    top_k: int = DEFAULT_TOP_K,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[Tuple[T, float]]:
    """Keep items scoring at least ``threshold``, best first, at most ``top_k``."""
    if top_k <= 0:
        return []
    kept = [(item, score) for item, score in scored if score >= threshold]
    # Stable even with reverse=True: ties keep insertion order
    kept.sort(key=lambda pair: pair[1], reverse=True)
    return kept[:top_k]

"""
Cosine similarity over embedding vectors (numpy).

Zero-magnitude vectors score 0.0. Vectors of different dimensionality are
never compared.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from numpy.typing import NDArray

from memorymesh.core.errors import ValidationError

Vector = Union[Sequence[float], NDArray[np.floating]]


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    dot(a, b) / (|a| * |b|), or 0.0 when either magnitude is zero.

    Raises:
        ValidationError: If the dimensions differ
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValidationError.dimension_mismatch(va.shape[0], vb.shape[0])

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def cosine_similarity_batch(query: Vector, candidates: NDArray[np.floating]) -> NDArray[np.float64]:
    """
    Similarity of ``query`` against each row of ``candidates``.

    Rows with zero magnitude score 0.0.
    """
    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(candidates, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise ValidationError.dimension_mismatch(q.shape[0], matrix.shape[-1])

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    if q_norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    dots = matrix @ q
    denom = row_norms * q_norm
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    np.divide(dots, denom, out=scores, where=denom > 0)
    return scores


def normalize(vector: Vector) -> NDArray[np.float64]:
    """Unit-length copy; the zero vector is returned unchanged."""
    v = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm

"""Vector math used by the embedding indexes."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def vector_norm(vec: Sequence[float]) -> float:
    """Euclidean length of a vector."""
    return float(np.linalg.norm(np.asarray(vec, dtype=np.float64)))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1].

    Returns 0.0 when either vector has zero length or the dimensions differ.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Similarity of ``query`` against every row of ``matrix``.

    Zero-norm rows score 0.0, as does everything when the query dimension
    does not match the matrix.
    """
    q = np.asarray(query, dtype=np.float64)
    if matrix.size == 0 or matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        return np.zeros(matrix.shape[0] if matrix.ndim == 2 else 0, dtype=np.float64)
    qn = np.linalg.norm(q)
    if qn == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    denom = np.linalg.norm(matrix, axis=1) * qn
    dots = matrix @ q
    out = np.zeros(matrix.shape[0], dtype=np.float64)
    nz = denom > 0
    out[nz] = dots[nz] / denom[nz]
    return out


def to_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Stack equal-length vectors into a float64 matrix (empty -> shape (0, 0))."""
    if not vectors:
        return np.zeros((0, 0), dtype=np.float64)
    return np.asarray(vectors, dtype=np.float64)

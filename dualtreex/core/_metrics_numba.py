from __future__ import annotations

import math

import numba as nb
import numpy as np

F64 = np.float64


@nb.njit(cache=True, inline="always")
def _minkowski_row(x: np.ndarray, y: np.ndarray, p: float) -> float:
    d = x.shape[0]
    if p == 2.0:
        acc = 0.0
        for i in range(d):
            diff = x[i] - y[i]
            acc += diff * diff
        return math.sqrt(acc)
    if p == 1.0:
        acc = 0.0
        for i in range(d):
            acc += abs(x[i] - y[i])
        return acc
    if math.isinf(p):
        acc = 0.0
        for i in range(d):
            diff = abs(x[i] - y[i])
            if diff > acc:
                acc = diff
        return acc
    acc = 0.0
    for i in range(d):
        acc += abs(x[i] - y[i]) ** p
    return acc ** (1.0 / p)


@nb.njit(cache=True, parallel=True)
def minkowski_pairwise_numba(lhs: np.ndarray, rhs: np.ndarray, p: float) -> np.ndarray:
    """Dense ``(len(lhs), len(rhs))`` Minkowski distance matrix."""

    m = lhs.shape[0]
    n = rhs.shape[0]
    out = np.empty((m, n), dtype=F64)
    for i in nb.prange(m):
        for j in range(n):
            out[i, j] = _minkowski_row(lhs[i], rhs[j], p)
    return out


__all__ = ["minkowski_pairwise_numba"]

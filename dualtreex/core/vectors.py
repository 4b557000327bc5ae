from __future__ import annotations

from typing import Any

import numpy as np
import scipy.sparse as sp

from dualtreex.exceptions import DimensionMismatchError


def as_points(points: Any) -> np.ndarray:
    """Return ``points`` as a 2-D float64 array of row vectors.

    Dense float64 arrays are returned as views, so indices handed out by the
    collections refer to the caller's rows. Sparse matrices are densified.
    """

    if sp.issparse(points):
        points = points.toarray()
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 1:
        if arr.shape[0] == 0:
            return arr.reshape(0, 0)
        return arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2-D collection of vectors, got shape {arr.shape}.")
    return arr


def as_query(query: Any, dimension: int) -> np.ndarray:
    """Return a single query vector, checking it against ``dimension``."""

    if sp.issparse(query):
        query = query.toarray()
    arr = np.asarray(query, dtype=np.float64)
    if arr.ndim == 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 1:
        raise ValueError(f"Expected a single query vector, got shape {arr.shape}.")
    if arr.shape[0] != dimension:
        raise DimensionMismatchError(
            f"Query has dimension {arr.shape[0]} but the collection holds "
            f"vectors of dimension {dimension}."
        )
    return arr


def check_dimension(points: np.ndarray, dimension: int) -> None:
    if points.shape[0] and points.shape[1] != dimension:
        raise DimensionMismatchError(
            f"Query collection has dimension {points.shape[1]} but the collection "
            f"holds vectors of dimension {dimension}."
        )


__all__ = ["as_points", "as_query", "check_dimension"]

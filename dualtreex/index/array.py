from __future__ import annotations

from typing import Any, Iterable, List

import numpy as np

from dualtreex.core.bounded import IndexDistPair
from dualtreex.core.metrics import DistanceMetric, get_metric
from dualtreex.core.vectors import as_points, as_query
from dualtreex.index.base import VectorCollection


class VectorArray(VectorCollection):
    """Linear-scan collection. Supports incremental insertion.

    Every query computes the distance to every stored vector, which makes it
    the reference answer the tree structures are checked against.
    """

    def __init__(self, points: Any = None, metric: DistanceMetric | None = None) -> None:
        self.metric = metric if metric is not None else get_metric()
        self._cache = None
        self._rows: List[np.ndarray] = []
        self._stacked: np.ndarray | None = None
        self._dimension = 0
        if points is not None:
            arr = as_points(points)
            self._dimension = int(arr.shape[1])
            self._rows = list(arr)
            self._stacked = arr

    @property
    def points(self) -> np.ndarray:
        if self._stacked is None:
            if self._rows:
                self._stacked = np.vstack(self._rows)
            else:
                self._stacked = np.zeros((0, self._dimension), dtype=np.float64)
        return self._stacked

    @property
    def dimension(self) -> int:
        return self._dimension

    def size(self) -> int:
        return len(self._rows)

    def get(self, index: int) -> np.ndarray:
        return self._rows[index]

    def insert(self, vector: Any) -> int:
        """Append ``vector`` and return its index."""

        if not self._rows and self._dimension == 0:
            arr = np.asarray(vector, dtype=np.float64).ravel()
            self._dimension = int(arr.shape[0])
        else:
            arr = as_query(vector, self._dimension)
        self._rows.append(arr)
        self._stacked = None
        return len(self._rows) - 1

    def insert_all(self, vectors: Iterable[Any]) -> None:
        for vector in vectors:
            self.insert(vector)

    def _distances(self, query: np.ndarray) -> np.ndarray:
        return self.metric.pairwise(query[None, :], self.points)[0]

    def _knn_pairs(self, query: np.ndarray, query_info: float | None, k: int) -> List[IndexDistPair]:
        dists = self._distances(query)
        order = np.lexsort((np.arange(dists.shape[0]), dists))[:k]
        return [IndexDistPair(float(dists[i]), int(i)) for i in order]

    def _radius_pairs(
        self, query: np.ndarray, query_info: float | None, radius: float
    ) -> List[IndexDistPair]:
        dists = self._distances(query)
        hits = np.flatnonzero(dists <= radius)
        return [IndexDistPair(float(dists[i]), int(i)) for i in hits]

    def clone(self) -> "VectorArray":
        clone = VectorArray(metric=self.metric.clone())
        clone._rows = list(self._rows)
        clone._stacked = self._stacked
        clone._dimension = self._dimension
        return clone

    def __repr__(self) -> str:
        return f"VectorArray(size={self.size()}, metric={self.metric!r})"


__all__ = ["VectorArray"]

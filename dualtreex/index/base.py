from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Sequence, Tuple

import numpy as np

from dualtreex import config as dx_config
from dualtreex.core.bounded import IndexDistPair, apply_index_table, index_table
from dualtreex.core.metrics import Cache, DistanceMetric
from dualtreex.core.vectors import as_points, as_query, check_dimension
from dualtreex.diagnostics import log_operation
from dualtreex.logging import get_logger

LOGGER = get_logger("index.base")

BatchResult = Tuple[List[List[int]], List[List[float]]]


def _validate_k(k: int) -> int:
    if isinstance(k, bool) or int(k) != k:
        raise ValueError(f"k must be an integer, got {k!r}.")
    k = int(k)
    if k < 1:
        raise ValueError(f"k must be positive, got {k}.")
    return k


def _validate_radius(radius: float) -> float:
    radius = float(radius)
    if not radius > 0.0:
        raise ValueError(f"Search radius must be positive, got {radius}.")
    return radius


def _validate_range(r_min: float, r_max: float) -> Tuple[float, float]:
    r_min = float(r_min)
    r_max = float(r_max)
    if not r_max >= 0.0:
        raise ValueError(f"Maximum search radius must be non-negative, got {r_max}.")
    if r_min > r_max:
        raise ValueError(f"Minimum radius {r_min} exceeds maximum radius {r_max}.")
    return r_min, r_max


def _pairs_to_arrays(pairs: Sequence[IndexDistPair]) -> Tuple[np.ndarray, np.ndarray]:
    indices = np.asarray([pair.index for pair in pairs], dtype=np.int64)
    distances = np.asarray([pair.dist for pair in pairs], dtype=np.float64)
    return indices, distances


def _sorted_pairs(pairs: List[IndexDistPair]) -> List[IndexDistPair]:
    pairs.sort()
    return pairs


def _split_evenly(count: int, parts: int) -> List[Tuple[int, int]]:
    parts = max(1, min(parts, count))
    bounds = np.linspace(0, count, parts + 1).astype(np.int64)
    return [(int(bounds[i]), int(bounds[i + 1])) for i in range(parts)]


class VectorCollection(ABC):
    """A container of indexed vectors answering nearest-neighbour queries.

    Subclasses provide single-query k-NN and radius search; batched searches
    over another collection fall back to one single-query search per query
    vector, optionally spread across a thread pool. Indices returned by every
    search refer to the position of the vector in this collection.
    """

    metric: DistanceMetric
    _points: np.ndarray
    _cache: Cache

    @property
    def points(self) -> np.ndarray:
        return self._points

    @property
    def acceleration_cache(self) -> Cache:
        return self._cache

    @property
    def dimension(self) -> int:
        return int(self.points.shape[1]) if self.points.ndim == 2 else 0

    def size(self) -> int:
        return int(self.points.shape[0])

    def __len__(self) -> int:
        return self.size()

    def get(self, index: int) -> np.ndarray:
        return self.points[index]

    # -- single query -------------------------------------------------

    @abstractmethod
    def _knn_pairs(self, query: np.ndarray, query_info: float | None, k: int) -> List[IndexDistPair]:
        """Return the ``k`` best candidates sorted by (distance, index)."""

    @abstractmethod
    def _radius_pairs(
        self, query: np.ndarray, query_info: float | None, radius: float
    ) -> List[IndexDistPair]:
        """Return every candidate at distance ``<= radius`` (any order); ``radius`` may be 0."""

    def _prepare_query(self, query: Any) -> Tuple[np.ndarray, float | None]:
        vec = as_query(query, self.dimension)
        info = self.metric.query_info(vec) if self._cache is not None else None
        return vec, info

    def search_knn(self, query: Any, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(indices, distances)`` of the ``k`` nearest stored vectors.

        Results are sorted by ascending distance. When ``k`` exceeds the number
        of stored vectors every stored vector is returned.
        """

        k = _validate_k(k)
        if self.size() == 0:
            return _pairs_to_arrays([])
        vec, info = self._prepare_query(query)
        return _pairs_to_arrays(self._knn_pairs(vec, info, min(k, self.size())))

    def search_radius(self, query: Any, radius: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(indices, distances)`` of every stored vector within ``radius``."""

        radius = _validate_radius(radius)
        if self.size() == 0:
            return _pairs_to_arrays([])
        vec, info = self._prepare_query(query)
        return _pairs_to_arrays(_sorted_pairs(self._radius_pairs(vec, info, radius)))

    def search(
        self,
        query: Any,
        *,
        k: int | None = None,
        radius: float | None = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        if (k is None) == (radius is None):
            raise ValueError("Exactly one of `k` or `radius` must be given.")
        if k is not None:
            return self.search_knn(query, k)
        return self.search_radius(query, radius)

    def search_knn_vectors(self, query: Any, k: int) -> List[Tuple[np.ndarray, float]]:
        """Return ``(vector, distance)`` pairs instead of indices."""

        indices, distances = self.search_knn(query, k)
        return [(self.get(int(i)), float(d)) for i, d in zip(indices, distances)]

    def search_radius_vectors(self, query: Any, radius: float) -> List[Tuple[np.ndarray, float]]:
        indices, distances = self.search_radius(query, radius)
        return [(self.get(int(i)), float(d)) for i, d in zip(indices, distances)]

    # -- batched ------------------------------------------------------

    def _query_points(self, other: Any) -> np.ndarray:
        points = other.points if isinstance(other, VectorCollection) else as_points(other)
        if self.size():
            check_dimension(points, self.dimension)
        return points

    def search_batch_knn(self, other: Any, k: int, *, parallel: bool = False) -> BatchResult:
        """For every vector of ``other``, its ``k`` nearest neighbours in ``self``.

        Returns parallel lists ``(neighbors, distances)`` indexed by the position
        of the query vector in ``other``.
        """

        k = _validate_k(k)
        queries = self._query_points(other)
        with log_operation(LOGGER, "batch_knn") as op_log:
            op_log.add_metadata(queries=queries.shape[0], k=k, parallel=parallel, mode="single")
            return self._map_queries(
                queries, lambda vec, info: self._knn_pairs(vec, info, min(k, self.size())), parallel
            )

    def search_batch_radius(
        self,
        other: Any,
        r_min: float,
        r_max: float,
        *,
        parallel: bool = False,
    ) -> BatchResult:
        """For every vector of ``other``, the stored vectors at distance in ``[r_min, r_max]``."""

        r_min, r_max = _validate_range(r_min, r_max)
        queries = self._query_points(other)

        def _window(vec: np.ndarray, info: float | None) -> List[IndexDistPair]:
            found = self._radius_pairs(vec, info, r_max)
            return _sorted_pairs([pair for pair in found if pair.dist >= r_min])

        with log_operation(LOGGER, "batch_radius") as op_log:
            op_log.add_metadata(
                queries=queries.shape[0], r_min=r_min, r_max=r_max, parallel=parallel, mode="single"
            )
            return self._map_queries(queries, _window, parallel)

    def search_batch(
        self,
        other: Any,
        *,
        k: int | None = None,
        r_min: float = 0.0,
        r_max: float | None = None,
        parallel: bool = False,
    ) -> BatchResult:
        if (k is None) == (r_max is None):
            raise ValueError("Exactly one of `k` or `r_max` must be given.")
        if k is not None:
            return self.search_batch_knn(other, k, parallel=parallel)
        return self.search_batch_radius(other, r_min, r_max, parallel=parallel)

    def _map_queries(self, queries: np.ndarray, search_one, parallel: bool) -> BatchResult:
        count = int(queries.shape[0])
        neighbors: List[List[int]] = [[] for _ in range(count)]
        distances: List[List[float]] = [[] for _ in range(count)]
        if count == 0 or self.size() == 0:
            return neighbors, distances

        def _run(bounds: Tuple[int, int]) -> None:
            for i in range(*bounds):
                vec = queries[i]
                info = self.metric.query_info(vec) if self._cache is not None else None
                pairs = search_one(vec, info)
                neighbors[i] = [pair.index for pair in pairs]
                distances[i] = [pair.dist for pair in pairs]

        workers = dx_config.runtime_config().workers
        if not parallel or workers <= 1 or count == 1:
            _run((0, count))
            return neighbors, distances

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_run, bounds) for bounds in _split_evenly(count, workers)]
            for future in futures:
                future.result()
        return neighbors, distances

    # -- copying ------------------------------------------------------

    def clone(self) -> "VectorCollection":
        """Return a copy whose index structure is independent of this one.

        The stored vectors themselves are shared; they are never mutated by
        searches.
        """

        clone = copy.copy(self)
        clone.metric = self.metric.clone()
        if self._cache is not None:
            clone._cache = np.array(self._cache, copy=True)
        return clone


def sort_matches(indices: List[int], distances: List[float]) -> None:
    """Sort parallel match lists in place by (distance, index)."""

    apply_index_table(index_table(distances, indices), indices, distances)


__all__ = ["VectorCollection", "BatchResult", "sort_matches"]

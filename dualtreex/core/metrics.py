from __future__ import annotations

import copy
import math
from typing import Any, Callable, Dict, Tuple

import numpy as np

from dualtreex import config as dx_config
from dualtreex.core._metrics_numba import minkowski_pairwise_numba

Cache = np.ndarray | None

# Squared distances below this fraction of |a|^2 + |b|^2 are recomputed directly.
_CANCELLATION_RATIO = 1e-4


class DistanceMetric:
    """Pairwise distance over row vectors.

    A metric may expose an *acceleration cache*: one precomputed scalar per
    stored vector (see :meth:`acceleration_cache`) that :meth:`dist_cached`
    uses to avoid redundant work. Queries get the matching scalar from
    :meth:`query_info`. Collections own their cache and rebuild it whenever
    the stored vectors change.
    """

    name = "metric"
    is_subadditive = True
    is_minkowski = False
    supports_acceleration = False

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        raise NotImplementedError

    def pairwise(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        lhs_arr = np.atleast_2d(np.asarray(lhs, dtype=np.float64))
        rhs_arr = np.atleast_2d(np.asarray(rhs, dtype=np.float64))
        out = np.empty((lhs_arr.shape[0], rhs_arr.shape[0]), dtype=np.float64)
        for i, row in enumerate(lhs_arr):
            for j, other in enumerate(rhs_arr):
                out[i, j] = self.dist(row, other)
        return out

    def acceleration_cache(self, points: np.ndarray) -> Cache:
        return None

    def query_info(self, query: np.ndarray) -> float | None:
        return None

    def dist_cached(
        self,
        lhs: np.ndarray,
        lhs_info: float | None,
        rhs: np.ndarray,
        rhs_info: float | None,
    ) -> float:
        return self.dist(lhs, rhs)

    def dist_indexed(self, i: int, j: int, points: np.ndarray, cache: Cache) -> float:
        if cache is None:
            return self.dist(points[i], points[j])
        return self.dist_cached(points[i], cache[i], points[j], cache[j])

    def dist_query(
        self,
        i: int,
        query: np.ndarray,
        query_info: float | None,
        points: np.ndarray,
        cache: Cache,
    ) -> float:
        if cache is None or query_info is None:
            return self.dist(points[i], query)
        return self.dist_cached(points[i], cache[i], query, query_info)

    def clone(self) -> "DistanceMetric":
        return copy.copy(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MinkowskiDistance(DistanceMetric):
    """L_p distance for ``p >= 1``; ``p = inf`` gives the Chebyshev distance."""

    name = "minkowski"
    is_minkowski = True

    def __init__(self, p: float = 2.0) -> None:
        p = float(p)
        if not p >= 1.0:
            raise ValueError(f"Minkowski order must be >= 1, got {p}.")
        self.p = p

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        diff = np.abs(np.asarray(lhs, dtype=np.float64) - np.asarray(rhs, dtype=np.float64))
        if math.isinf(self.p):
            return float(diff.max(initial=0.0))
        return float(np.sum(diff ** self.p) ** (1.0 / self.p))

    def pairwise(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        lhs_arr = np.ascontiguousarray(np.atleast_2d(np.asarray(lhs, dtype=np.float64)))
        rhs_arr = np.ascontiguousarray(np.atleast_2d(np.asarray(rhs, dtype=np.float64)))
        if lhs_arr.shape[1] != rhs_arr.shape[1]:
            raise ValueError("Pairwise metric operands must share their dimensionality.")
        if lhs_arr.shape[0] == 0 or rhs_arr.shape[0] == 0:
            return np.zeros((lhs_arr.shape[0], rhs_arr.shape[0]), dtype=np.float64)
        if dx_config.runtime_config().enable_numba:
            return minkowski_pairwise_numba(lhs_arr, rhs_arr, self.p)
        return self._pairwise_numpy(lhs_arr, rhs_arr)

    def _pairwise_numpy(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        diff = np.abs(lhs[:, None, :] - rhs[None, :, :])
        if math.isinf(self.p):
            return diff.max(axis=-1, initial=0.0)
        return np.sum(diff ** self.p, axis=-1) ** (1.0 / self.p)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(p={self.p})"


class EuclideanDistance(MinkowskiDistance):
    """L2 distance; its acceleration cache holds squared norms."""

    name = "euclidean"
    supports_acceleration = True

    def __init__(self) -> None:
        super().__init__(2.0)

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        diff = np.asarray(lhs, dtype=np.float64) - np.asarray(rhs, dtype=np.float64)
        return float(math.sqrt(np.dot(diff, diff)))

    def _pairwise_numpy(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        diff = lhs[:, None, :] - rhs[None, :, :]
        return np.sqrt(np.sum(diff * diff, axis=-1))

    def acceleration_cache(self, points: np.ndarray) -> Cache:
        # np.dot per row so that cached norms match query_info bit for bit
        points = np.asarray(points, dtype=np.float64)
        return np.asarray([np.dot(row, row) for row in points], dtype=np.float64)

    def query_info(self, query: np.ndarray) -> float | None:
        return float(np.dot(query, query))

    def dist_cached(self, lhs, lhs_info, rhs, rhs_info) -> float:
        if lhs_info is None or rhs_info is None:
            return self.dist(lhs, rhs)
        norms = lhs_info + rhs_info
        sq = norms - 2.0 * float(np.dot(lhs, rhs))
        if sq <= _CANCELLATION_RATIO * norms:
            # too many digits cancelled; close vectors far from the origin
            return self.dist(lhs, rhs)
        return math.sqrt(sq)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ManhattanDistance(MinkowskiDistance):
    name = "manhattan"

    def __init__(self) -> None:
        super().__init__(1.0)

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        return float(np.sum(np.abs(np.asarray(lhs, dtype=np.float64) - rhs)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ChebyshevDistance(MinkowskiDistance):
    name = "chebyshev"

    def __init__(self) -> None:
        super().__init__(math.inf)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class CosineDistance(DistanceMetric):
    """``1 - cos(x, y)``. Not a metric in the triangle-inequality sense."""

    name = "cosine"
    is_subadditive = False
    supports_acceleration = True

    def dist(self, lhs: np.ndarray, rhs: np.ndarray) -> float:
        return self.dist_cached(
            lhs, float(np.linalg.norm(lhs)), rhs, float(np.linalg.norm(rhs))
        )

    def pairwise(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        lhs_arr = np.atleast_2d(np.asarray(lhs, dtype=np.float64))
        rhs_arr = np.atleast_2d(np.asarray(rhs, dtype=np.float64))
        lhs_norm = np.linalg.norm(lhs_arr, axis=1)
        rhs_norm = np.linalg.norm(rhs_arr, axis=1)
        denom = lhs_norm[:, None] * rhs_norm[None, :]
        dots = lhs_arr @ rhs_arr.T
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(denom > 0.0, dots / denom, 0.0)
        return np.clip(1.0 - sims, 0.0, 2.0)

    def acceleration_cache(self, points: np.ndarray) -> Cache:
        points = np.asarray(points, dtype=np.float64)
        return np.asarray([np.linalg.norm(row) for row in points], dtype=np.float64)

    def query_info(self, query: np.ndarray) -> float | None:
        return float(np.linalg.norm(query))

    def dist_cached(self, lhs, lhs_info, rhs, rhs_info) -> float:
        if lhs_info is None or rhs_info is None:
            return self.dist(lhs, rhs)
        denom = lhs_info * rhs_info
        if denom <= 0.0:
            return 1.0
        return min(max(1.0 - float(np.dot(lhs, rhs)) / denom, 0.0), 2.0)


MetricFactory = Callable[..., DistanceMetric]


class MetricRegistry:
    """Minimal registry for runtime-selectable metrics."""

    def __init__(self) -> None:
        self._factories: Dict[str, MetricFactory] = {}

    def register(self, name: str, factory: MetricFactory, *, overwrite: bool = False) -> None:
        key = name.lower()
        if not overwrite and key in self._factories:
            raise ValueError(f"Metric '{name}' already registered.")
        self._factories[key] = factory

    def get(self, name: str, **params: Any) -> DistanceMetric:
        key = name.lower()
        if key not in self._factories:
            raise KeyError(f"Metric '{name}' not registered.")
        return self._factories[key](**params)

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._factories.keys()))


def _load_registry() -> MetricRegistry:
    registry = MetricRegistry()
    registry.register("euclidean", EuclideanDistance)
    registry.register("manhattan", ManhattanDistance)
    registry.register("chebyshev", ChebyshevDistance)
    registry.register("minkowski", MinkowskiDistance)
    registry.register("cosine", CosineDistance)
    return registry


_REGISTRY = _load_registry()


def get_metric(name: str | None = None, **params: Any) -> DistanceMetric:
    """Return a fresh metric instance, defaulting to the runtime-selected metric."""

    if name is None:
        name = dx_config.runtime_config().metric
    return _REGISTRY.get(name, **params)


def register_metric(name: str, factory: MetricFactory, *, overwrite: bool = False) -> None:
    _REGISTRY.register(name, factory, overwrite=overwrite)


def available_metrics() -> Tuple[str, ...]:
    return _REGISTRY.names()


__all__ = [
    "DistanceMetric",
    "MinkowskiDistance",
    "EuclideanDistance",
    "ManhattanDistance",
    "ChebyshevDistance",
    "CosineDistance",
    "MetricRegistry",
    "available_metrics",
    "get_metric",
    "register_metric",
]

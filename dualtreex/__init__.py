"""dualtreex: nearest-neighbour search with vantage-point and k-d trees.

Quick Start
-----------
>>> import numpy as np
>>> from dualtreex import VPTree
>>>
>>> points = np.random.randn(10000, 3)
>>> tree = VPTree(points)
>>> idx, dist = tree.search_knn(points[0], k=10)
>>> neighbors, distances = tree.search_batch_knn(points[:100], k=10)

Classes
-------
VPTree : Vantage-point tree for any metric obeying the triangle inequality.
KDTree : k-d tree for Minkowski-family metrics.
VectorArray : Brute-force collection with incremental insertion.
"""

from importlib.metadata import version as _pkg_version

try:
    __version__ = _pkg_version("dualtreex")
except Exception:  # pragma: no cover - best effort during local development
    __version__ = "0.1.0"

from .config import configure_runtime, describe_runtime, reset_runtime_context, runtime_config
from .core import (
    ChebyshevDistance,
    CosineDistance,
    DistanceMetric,
    EuclideanDistance,
    ManhattanDistance,
    MinkowskiDistance,
    available_metrics,
    get_metric,
    register_metric,
)
from .exceptions import DimensionMismatchError, DualTreexError, IncompatibleMetricError
from .index import DualTree, KDTree, VectorArray, VectorCollection, VPTree
from .queries import KthNeighborStats, all_eps_neighbors, all_nearest_neighbors, kth_neighbor_stats

__all__ = [
    "__version__",
    "VPTree",
    "KDTree",
    "VectorArray",
    "VectorCollection",
    "DualTree",
    "DistanceMetric",
    "EuclideanDistance",
    "ManhattanDistance",
    "ChebyshevDistance",
    "MinkowskiDistance",
    "CosineDistance",
    "available_metrics",
    "get_metric",
    "register_metric",
    "all_nearest_neighbors",
    "all_eps_neighbors",
    "kth_neighbor_stats",
    "KthNeighborStats",
    "DualTreexError",
    "IncompatibleMetricError",
    "DimensionMismatchError",
    "configure_runtime",
    "describe_runtime",
    "reset_runtime_context",
    "runtime_config",
]

"""Metrics, vector normalisation and bounded candidate lists."""

from .bounded import BoundedSortedList, IndexDistPair, apply_index_table, index_table
from .metrics import (
    ChebyshevDistance,
    CosineDistance,
    DistanceMetric,
    EuclideanDistance,
    ManhattanDistance,
    MetricRegistry,
    MinkowskiDistance,
    available_metrics,
    get_metric,
    register_metric,
)
from .vectors import as_points, as_query

__all__ = [
    "BoundedSortedList",
    "IndexDistPair",
    "apply_index_table",
    "index_table",
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
    "as_points",
    "as_query",
]

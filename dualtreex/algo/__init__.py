"""Node abstraction and the dual-tree traversal engine."""

from .dual import (
    BoundCache,
    TraversalStats,
    compute_knn_bound,
    dual_depth_first,
    dual_depth_first_parallel,
)
from .nodes import IndexNode, Score, SelfAsChildNode

__all__ = [
    "IndexNode",
    "Score",
    "SelfAsChildNode",
    "BoundCache",
    "TraversalStats",
    "compute_knn_bound",
    "dual_depth_first",
    "dual_depth_first_parallel",
]

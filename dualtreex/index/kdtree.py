from __future__ import annotations

import copy
from typing import Any, Callable, List, Tuple

import numpy as np

from dualtreex import config as dx_config
from dualtreex.algo.nodes import IndexNode, SelfAsChildNode
from dualtreex.core.bounded import BoundedSortedList, IndexDistPair
from dualtreex.core.metrics import DistanceMetric, get_metric
from dualtreex.core.vectors import as_points
from dualtreex.diagnostics import log_operation
from dualtreex.exceptions import IncompatibleMetricError
from dualtreex.index._forkjoin import ForkJoinBuilder, build_with_fallback
from dualtreex.index.dual import DualTree
from dualtreex.logging import get_logger

LOGGER = get_logger("index.kdtree")

_PIVOTS = ("incremental", "variance")


class KDNode(IndexNode):
    """One stored vector splitting its subtree along ``axis``.

    Every vector in ``left`` has an ``axis`` coordinate no larger than the
    pivot's, every vector in ``right`` one no smaller.
    """

    __slots__ = ("tree", "pivot", "axis", "left", "right", "up", "radius")

    def __init__(self, tree: "KDTree", pivot: int, axis: int, up: "KDNode | None") -> None:
        self.tree = tree
        self.pivot = pivot
        self.axis = axis
        self.up = up
        self.left: KDNode | None = None
        self.right: KDNode | None = None
        self.radius = 0.0

    @property
    def owner(self) -> "KDTree":
        return self.tree

    def parent(self) -> "KDNode | None":
        return self.up

    def _present(self) -> Tuple["KDNode", ...]:
        return tuple(node for node in (self.left, self.right) if node is not None)

    def num_children(self) -> int:
        return len(self._present())

    def child(self, index: int) -> "KDNode":
        return self._present()[index]

    def num_points(self) -> int:
        return 1

    def point(self, index: int) -> int:
        if index != 0:
            raise IndexError(index)
        return self.pivot

    def center(self) -> int:
        return self.pivot

    def furthest_point_distance(self) -> float:
        return 0.0

    def furthest_descendant_distance(self) -> float:
        return self.radius


class KDTree(DualTree):
    """k-d tree for Minkowski-family metrics.

    ``pivot`` chooses the split axis per node: ``"incremental"`` cycles
    through the axes by depth, ``"variance"`` takes the axis of largest
    variance among the node's vectors and falls back to the incremental axis
    when no axis varies.
    """

    def __init__(
        self,
        points: Any = None,
        metric: DistanceMetric | None = None,
        *,
        pivot: str | None = None,
        parallel: bool = False,
    ) -> None:
        config = dx_config.runtime_config()
        metric = metric if metric is not None else get_metric()
        if not metric.is_minkowski:
            raise IncompatibleMetricError(
                f"KDTree requires a Minkowski-family metric; got {metric!r}."
            )
        pivot = (pivot or config.kd_pivot_selection).lower()
        if pivot not in _PIVOTS:
            raise ValueError(f"Unsupported KD pivot selection '{pivot}'.")
        self.metric = metric
        self.pivot = pivot
        self._points = as_points(points if points is not None else [])
        self._cache = (
            metric.acceleration_cache(self._points) if metric.supports_acceleration else None
        )
        self._root: KDNode | None = None

        count = self.size()
        with log_operation(LOGGER, "kdtree_build") as op_log:
            op_log.add_metadata(points=count, pivot=pivot, parallel=parallel)
            if count:
                self._root = build_with_fallback(
                    "KD-tree",
                    self._build,
                    np.arange(count, dtype=np.int64),
                    0,
                    None,
                    parallel=parallel,
                    workers=config.workers,
                )

    # -- construction --------------------------------------------------

    def _split_axis(self, subset: np.ndarray, depth: int) -> int:
        dimension = self.dimension
        if self.pivot == "incremental" or subset.shape[0] < 2:
            return depth % dimension
        variances = np.var(self._points[subset], axis=0)
        axis = int(np.argmax(variances))
        best = variances[axis]
        if not np.isfinite(best) or best <= 0.0:
            return depth % dimension
        return axis

    def _build(
        self,
        builder: ForkJoinBuilder,
        subset: np.ndarray,
        depth: int,
        up: KDNode | None,
    ) -> KDNode | None:
        if subset.shape[0] == 0:
            return None
        axis = self._split_axis(subset, depth)
        order = np.argsort(self._points[subset, axis], kind="stable")
        ordered = subset[order]
        median = ordered.shape[0] // 2
        node = KDNode(self, int(ordered[median]), axis, up)
        node.radius = max(
            (self._dist(node.pivot, int(j)) for j in ordered),
            default=0.0,
        )
        builder.fork(node, "right", self._build, ordered[median + 1 :], depth + 1, node)
        node.left = self._build(builder, ordered[:median], depth + 1, node)
        return node

    def _dist(self, i: int, j: int) -> float:
        return self.metric.dist_indexed(i, j, self._points, self._cache)

    # -- single query --------------------------------------------------

    def _query_dist(self, index: int, query: np.ndarray, query_info: float | None) -> float:
        return self.metric.dist_query(index, query, query_info, self._points, self._cache)

    def _knn_pairs(self, query: np.ndarray, query_info: float | None, k: int) -> List[IndexDistPair]:
        found: BoundedSortedList[IndexDistPair] = BoundedSortedList(k)
        # (node, lower bound on the distance from the query to its half-space)
        stack: List[Tuple[KDNode | None, float]] = [(self._root, 0.0)]
        while stack:
            node, gap = stack.pop()
            if node is None:
                continue
            if found.is_full() and gap > found.last().dist:
                continue
            found.add(IndexDistPair(self._query_dist(node.pivot, query, query_info), node.pivot))

            q_val = float(query[node.axis])
            c_val = float(self._points[node.pivot, node.axis])
            diff = q_val - c_val
            tau = found.last().dist
            full = found.is_full()
            left = (node.left, max(diff, 0.0))
            right = (node.right, max(-diff, 0.0))
            visit_left = not full or q_val - tau <= c_val
            visit_right = not full or q_val + tau >= c_val
            # far side first so the near side is popped next
            if diff <= 0:
                if visit_right:
                    stack.append(right)
                if visit_left:
                    stack.append(left)
            else:
                if visit_left:
                    stack.append(left)
                if visit_right:
                    stack.append(right)
        return list(found)

    def _radius_pairs(
        self, query: np.ndarray, query_info: float | None, radius: float
    ) -> List[IndexDistPair]:
        found: List[IndexDistPair] = []
        self._radius_visit(self._root, query, query_info, radius, found)
        return found

    def _radius_visit(
        self,
        node: KDNode | None,
        query: np.ndarray,
        query_info: float | None,
        radius: float,
        found: List[IndexDistPair],
    ) -> None:
        if node is None:
            return
        dist = self._query_dist(node.pivot, query, query_info)
        if dist <= radius:
            found.append(IndexDistPair(dist, node.pivot))
        diff = float(query[node.axis] - self._points[node.pivot, node.axis])
        near, far = (node.left, node.right) if diff <= 0 else (node.right, node.left)
        self._radius_visit(near, query, query_info, radius, found)
        # the axis gap never exceeds an L_p distance for p >= 1
        if abs(diff) <= radius:
            self._radius_visit(far, query, query_info, radius, found)

    # -- dual tree -----------------------------------------------------

    def root_node(self) -> SelfAsChildNode | None:
        if self._root is None:
            return None
        return SelfAsChildNode(self._root)

    def _build_query_tree(self, points: np.ndarray, parallel: bool) -> "KDTree":
        return KDTree(points, self.metric.clone(), pivot=self.pivot, parallel=parallel)

    # -- misc ----------------------------------------------------------

    @property
    def root(self) -> KDNode | None:
        return self._root

    def clone(self) -> "KDTree":
        clone = super().clone()
        clone._root = copy.deepcopy(self._root, memo={id(self): clone})
        return clone

    @classmethod
    def factory(cls, pivot: str = "variance") -> Callable[..., "KDTree"]:
        """Return ``make(points, metric=None, parallel=False)`` building trees with ``pivot``."""

        def make(points: Any, metric: DistanceMetric | None = None, parallel: bool = False) -> "KDTree":
            return cls(points, metric, pivot=pivot, parallel=parallel)

        return make

    def __repr__(self) -> str:
        return f"KDTree(size={self.size()}, metric={self.metric!r}, pivot={self.pivot!r})"


__all__ = ["KDTree", "KDNode"]

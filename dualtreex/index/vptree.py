"""Vantage-point tree.

Each branch picks a vantage point, sorts the remaining vectors by their
distance to it and splits them at the median: the closer half goes left, the
rest right. The branch records the distance range ``[low, high]`` of each side
so that a search can skip a side whose range cannot hold anything closer than
the current k-th candidate (or the search radius). Subsets of at most
``max_leaf_size`` vectors become leaves that also remember each point's
distance to the parent vantage point for a cheap per-point triangle check.

Requires a metric obeying the triangle inequality.
"""

from __future__ import annotations

import copy
import math
import threading
from typing import Any, Callable, List

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

LOGGER = get_logger("index.vptree")

_SELECTIONS = ("random", "sampling")
_MIN_LEAF_SIZE = 5


class VPBranch(IndexNode):
    __slots__ = (
        "tree",
        "vantage",
        "left_low",
        "left_high",
        "right_low",
        "right_high",
        "left",
        "right",
        "up",
    )

    def __init__(self, tree: "VPTree", vantage: int, up: "VPBranch | None") -> None:
        self.tree = tree
        self.vantage = vantage
        self.up = up
        self.left_low = self.left_high = 0.0
        self.right_low = self.right_high = 0.0
        self.left: IndexNode | None = None
        self.right: IndexNode | None = None

    @property
    def owner(self) -> "VPTree":
        return self.tree

    def parent(self) -> "VPBranch | None":
        return self.up

    def num_children(self) -> int:
        return 2

    def child(self, index: int) -> IndexNode:
        return (self.left, self.right)[index]

    def num_points(self) -> int:
        return 1

    def point(self, index: int) -> int:
        if index != 0:
            raise IndexError(index)
        return self.vantage

    def center(self) -> int:
        return self.vantage

    def furthest_point_distance(self) -> float:
        return 0.0

    def furthest_descendant_distance(self) -> float:
        return max(self.left_high, self.right_high)

    def search_left(self, x: float, tau: float) -> bool:
        return self.left_low - tau <= x <= self.left_high + tau

    def search_right(self, x: float, tau: float) -> bool:
        return self.right_low - tau <= x <= self.right_high + tau


class VPLeaf(IndexNode):
    __slots__ = ("tree", "points", "bounds", "radius", "up")

    def __init__(
        self,
        tree: "VPTree",
        points: np.ndarray,
        bounds: np.ndarray,
        radius: float,
        up: VPBranch | None,
    ) -> None:
        self.tree = tree
        self.points = points
        # distance of each point to the parent's vantage point; nan at the root
        self.bounds = bounds
        self.radius = radius
        self.up = up

    @property
    def owner(self) -> "VPTree":
        return self.tree

    def parent(self) -> VPBranch | None:
        return self.up

    def num_children(self) -> int:
        return 0

    def child(self, index: int) -> IndexNode:
        raise IndexError("Leaves have no children.")

    def num_points(self) -> int:
        return int(self.points.shape[0])

    def point(self, index: int) -> int:
        return int(self.points[index])

    def center(self) -> int:
        return int(self.points[0])

    def furthest_point_distance(self) -> float:
        return self.radius

    def furthest_descendant_distance(self) -> float:
        return self.radius


class VPTree(DualTree):
    """Vantage-point tree over a fixed set of vectors.

    Parameters
    ----------
    points:
        Row vectors (2-D array, sequence of vectors or a sparse matrix). Dense
        float64 input is referenced, not copied.
    metric:
        Any metric with ``is_subadditive``; defaults to the runtime metric.
    selection:
        ``"random"`` picks each vantage point uniformly; ``"sampling"`` tries
        ``search_iterations`` candidates against ``sample_size`` reference
        points and keeps the one whose distances spread the most around their
        median.
    max_leaf_size:
        Largest subset kept as a flat leaf; values below 5 are raised to 5.
    parallel:
        Build the two halves of each split concurrently on a thread pool.
    """

    def __init__(
        self,
        points: Any = None,
        metric: DistanceMetric | None = None,
        *,
        selection: str | None = None,
        sample_size: int | None = None,
        search_iterations: int | None = None,
        max_leaf_size: int = _MIN_LEAF_SIZE,
        seed: int | None = None,
        parallel: bool = False,
    ) -> None:
        config = dx_config.runtime_config()
        metric = metric if metric is not None else get_metric()
        if not metric.is_subadditive:
            raise IncompatibleMetricError(
                f"VPTree requires a metric obeying the triangle inequality; got {metric!r}."
            )
        selection = (selection or config.vp_selection).lower()
        if selection not in _SELECTIONS:
            raise ValueError(f"Unsupported vantage-point selection '{selection}'.")
        self.metric = metric
        self.selection = selection
        self.sample_size = int(sample_size or config.vp_sample_size)
        self.search_iterations = int(search_iterations or config.vp_search_iterations)
        if self.sample_size <= 0 or self.search_iterations <= 0:
            raise ValueError("Sample size and search iterations must be positive.")
        self.max_leaf_size = max(_MIN_LEAF_SIZE, int(max_leaf_size))
        self._rng = np.random.default_rng(config.seed if seed is None else seed)
        self._rng_lock = threading.Lock()
        self._points = as_points(points if points is not None else [])
        self._cache = (
            metric.acceleration_cache(self._points) if metric.supports_acceleration else None
        )
        self._root: IndexNode | None = None

        count = self.size()
        with log_operation(LOGGER, "vptree_build") as op_log:
            op_log.add_metadata(points=count, selection=selection, parallel=parallel)
            if count:
                self._root = build_with_fallback(
                    "VP-tree",
                    self._build,
                    np.arange(count, dtype=np.int64),
                    None,
                    None,
                    parallel=parallel,
                    workers=config.workers,
                )

    # -- construction --------------------------------------------------

    def _dist(self, i: int, j: int) -> float:
        return self.metric.dist_indexed(i, j, self._points, self._cache)

    def _select_vantage(self, subset: np.ndarray) -> int:
        """Return the position in ``subset`` of the next vantage point."""

        count = int(subset.shape[0])
        with self._rng_lock:
            if self.selection == "random":
                return int(self._rng.integers(count))
            if self.sample_size <= count:
                samples = subset[: self.sample_size]
            else:
                samples = subset[self._rng.integers(count, size=self.sample_size)]
            if self.search_iterations <= count:
                candidates = np.arange(self.search_iterations)
            else:
                candidates = self._rng.integers(count, size=count)

        sample_points = self._points[samples]
        best = -1
        best_spread = -math.inf
        for position in candidates:
            dists = np.sort(
                self.metric.pairwise(self._points[subset[position]][None, :], sample_points)[0]
            )
            median = dists[dists.shape[0] // 2]
            spread = float(np.abs(dists - median).sum())
            if spread > best_spread:
                best_spread = spread
                best = int(position)
        return best

    def _build(
        self,
        builder: ForkJoinBuilder,
        subset: np.ndarray,
        dists: np.ndarray | None,
        up: VPBranch | None,
    ) -> IndexNode:
        if subset.shape[0] <= self.max_leaf_size:
            return self._make_leaf(subset, dists, up)

        position = self._select_vantage(subset)
        subset = subset.copy()
        subset[[0, position]] = subset[[position, 0]]
        node = VPBranch(self, int(subset[0]), up)

        rest = subset[1:]
        rest_dists = np.asarray([self._dist(node.vantage, int(j)) for j in rest], dtype=np.float64)
        order = np.argsort(rest_dists, kind="stable")
        rest = rest[order]
        rest_dists = rest_dists[order]
        split = rest.shape[0] // 2
        node.left_low = float(rest_dists[0])
        node.left_high = float(rest_dists[split])
        node.right_low = float(rest_dists[split + 1])
        node.right_high = float(rest_dists[-1])

        builder.fork(node, "right", self._build, rest[split + 1 :], rest_dists[split + 1 :], node)
        node.left = self._build(builder, rest[: split + 1], rest_dists[: split + 1], node)
        return node

    def _make_leaf(self, subset: np.ndarray, dists: np.ndarray | None, up: VPBranch | None) -> VPLeaf:
        points = subset.copy()
        bounds = dists.copy() if dists is not None else np.full(points.shape[0], np.nan)
        center = int(points[0])
        radius = max((self._dist(center, int(p)) for p in points), default=0.0)
        return VPLeaf(self, points, bounds, radius, up)

    # -- single query --------------------------------------------------

    def _query_dist(self, index: int, query: np.ndarray, query_info: float | None) -> float:
        return self.metric.dist_query(index, query, query_info, self._points, self._cache)

    def _knn_pairs(self, query: np.ndarray, query_info: float | None, k: int) -> List[IndexDistPair]:
        found: BoundedSortedList[IndexDistPair] = BoundedSortedList(k)
        self._knn_visit(self._root, query, query_info, found, None)
        return list(found)

    def _knn_visit(
        self,
        node: IndexNode,
        query: np.ndarray,
        query_info: float | None,
        found: BoundedSortedList[IndexDistPair],
        x: float | None,
    ) -> None:
        if isinstance(node, VPLeaf):
            for point, bound in zip(node.points, node.bounds):
                if x is not None and found.is_full():
                    tau = found.last().dist
                    if not bound - tau <= x <= bound + tau:
                        continue
                point = int(point)
                found.add(IndexDistPair(self._query_dist(point, query, query_info), point))
            return

        x = self._query_dist(node.vantage, query, query_info)
        found.add(IndexDistPair(x, node.vantage))
        middle = (node.left_high + node.right_low) * 0.5
        if x < middle:
            sides = ((node.left, node.search_left), (node.right, node.search_right))
        else:
            sides = ((node.right, node.search_right), (node.left, node.search_left))
        for child, reachable in sides:
            if not found.is_full() or reachable(x, found.last().dist):
                self._knn_visit(child, query, query_info, found, x)

    def _radius_pairs(
        self, query: np.ndarray, query_info: float | None, radius: float
    ) -> List[IndexDistPair]:
        found: List[IndexDistPair] = []
        stack: List[tuple] = [(self._root, None)]
        while stack:
            node, x = stack.pop()
            if isinstance(node, VPLeaf):
                for point, bound in zip(node.points, node.bounds):
                    if x is not None and not bound - radius <= x <= bound + radius:
                        continue
                    point = int(point)
                    dist = self._query_dist(point, query, query_info)
                    if dist <= radius:
                        found.append(IndexDistPair(dist, point))
                continue
            x = self._query_dist(node.vantage, query, query_info)
            if x <= radius:
                found.append(IndexDistPair(x, node.vantage))
            if node.search_left(x, radius):
                stack.append((node.left, x))
            if node.search_right(x, radius):
                stack.append((node.right, x))
        return found

    # -- dual tree -----------------------------------------------------

    def root_node(self) -> SelfAsChildNode | None:
        if self._root is None:
            return None
        return SelfAsChildNode(self._root)

    def _build_query_tree(self, points: np.ndarray, parallel: bool) -> "VPTree":
        with self._rng_lock:
            seed = int(self._rng.integers(2**63 - 1))
        return VPTree(
            points,
            self.metric.clone(),
            selection=self.selection,
            sample_size=self.sample_size,
            search_iterations=self.search_iterations,
            max_leaf_size=self.max_leaf_size,
            seed=seed,
            parallel=parallel,
        )

    # -- misc ----------------------------------------------------------

    @property
    def root(self) -> IndexNode | None:
        return self._root

    def clone(self) -> "VPTree":
        clone = super().clone()
        with self._rng_lock:
            clone._rng = copy.deepcopy(self._rng)
        clone._rng_lock = threading.Lock()
        clone._root = copy.deepcopy(self._root, memo={id(self): clone})
        return clone

    @classmethod
    def factory(cls, selection: str = "random", **options: Any) -> Callable[..., "VPTree"]:
        """Return ``make(points, metric=None, parallel=False)`` building trees with these options."""

        def make(points: Any, metric: DistanceMetric | None = None, parallel: bool = False) -> "VPTree":
            return cls(points, metric, selection=selection, parallel=parallel, **options)

        return make

    def __repr__(self) -> str:
        return (
            f"VPTree(size={self.size()}, metric={self.metric!r}, "
            f"selection={self.selection!r}, max_leaf_size={self.max_leaf_size})"
        )


__all__ = ["VPTree", "VPBranch", "VPLeaf"]

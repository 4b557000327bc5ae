from __future__ import annotations

import threading
from abc import abstractmethod
from typing import Any, Callable, List

import numpy as np

from dualtreex import config as dx_config
from dualtreex.algo.dual import (
    PARALLEL_INTERRUPTIONS,
    BaseCase,
    BoundCache,
    ScoreFn,
    TraversalStats,
    compute_knn_bound,
    dual_depth_first,
    dual_depth_first_parallel,
)
from dualtreex.algo.nodes import IndexNode, Score
from dualtreex.core.bounded import BoundedSortedList, IndexDistPair
from dualtreex.diagnostics import log_operation
from dualtreex.index.base import BatchResult, VectorCollection, _validate_k, _validate_range
from dualtreex.logging import get_logger

LOGGER = get_logger("index.dual")


class DualTree(VectorCollection):
    """A tree-shaped collection that answers batched searches by dual-tree traversal.

    Subclasses expose their root through :meth:`root_node` with every point
    held at a leaf (wrap in :class:`~dualtreex.algo.nodes.SelfAsChildNode`
    when branch nodes own points) and say how to index query vectors with
    :meth:`_build_query_tree`.
    """

    @abstractmethod
    def root_node(self) -> IndexNode | None:
        """Return the traversal root, or ``None`` when the tree is empty."""

    @abstractmethod
    def _build_query_tree(self, points: np.ndarray, parallel: bool) -> "DualTree":
        """Index query vectors in a tree of this type under the same metric."""

    def _query_tree(self, other: Any, parallel: bool) -> "DualTree":
        if isinstance(other, DualTree) and _same_metric(self.metric, other.metric):
            self._query_points(other)
            return other
        return self._build_query_tree(self._query_points(other), parallel)

    def _distance_fn(self, query_tree: "DualTree") -> Callable[[int, int], float]:
        metric = self.metric
        ref_points = self.points
        query_points = query_tree.points
        ref_cache = self.acceleration_cache
        query_cache = query_tree.acceleration_cache
        if ref_cache is None or query_cache is None:
            return lambda r, q: metric.dist(ref_points[r], query_points[q])
        return lambda r, q: metric.dist_cached(
            ref_points[r], ref_cache[r], query_points[q], query_cache[q]
        )

    def _traverse(
        self,
        query_tree: "DualTree",
        base_case: BaseCase,
        score: ScoreFn,
        *,
        improved: bool,
        parallel: bool,
        reset: Callable[[], None],
    ) -> TraversalStats:
        config = dx_config.runtime_config()
        ref_root = self.root_node()
        query_root = query_tree.root_node()
        if ref_root is None or query_root is None:
            return TraversalStats()
        if parallel and config.workers > 1:
            try:
                return dual_depth_first_parallel(
                    ref_root,
                    query_root,
                    base_case,
                    score,
                    workers=config.workers,
                    improved=improved,
                    tie_eps=config.score_tie_eps,
                )
            except PARALLEL_INTERRUPTIONS as exc:
                LOGGER.warning("Parallel traversal interrupted (%s); retrying serially.", exc)
                reset()
        return dual_depth_first(
            ref_root,
            query_root,
            base_case,
            score,
            improved=improved,
            tie_eps=config.score_tie_eps,
        )

    def search_batch_knn(self, other: Any, k: int, *, parallel: bool = False) -> BatchResult:
        k = _validate_k(k)
        query_tree = self._query_tree(other, parallel)
        count = query_tree.size()
        if count == 0 or self.size() == 0:
            return [[] for _ in range(count)], [[] for _ in range(count)]
        k = min(k, self.size())
        distance = self._distance_fn(query_tree)
        candidates: List[BoundedSortedList[IndexDistPair]] = []
        cache = BoundCache()

        def _reset() -> None:
            nonlocal cache
            candidates[:] = [BoundedSortedList(k) for _ in range(count)]
            cache = BoundCache()

        def _base_case(ref_point: int, query_point: int) -> None:
            candidates[query_point].add(IndexDistPair(distance(ref_point, query_point), ref_point))

        def _score(ref_node: IndexNode, query_node: IndexNode, previous: Score) -> Score:
            if previous is None:
                lower = ref_node.min_node_distance(query_node)
                if lower > cache.get(query_node):
                    return None
                return lower
            if previous > compute_knn_bound(query_node, candidates, cache):
                return None
            return previous

        _reset()
        improved = dx_config.runtime_config().improved_traversal
        with log_operation(LOGGER, "batch_knn") as op_log:
            stats = self._traverse(
                query_tree, _base_case, _score, improved=improved, parallel=parallel, reset=_reset
            )
            op_log.add_metadata(
                queries=count,
                k=k,
                parallel=parallel,
                mode="dual",
                visited=stats.visited,
                base_cases=stats.base_cases,
                pruned=stats.pruned,
            )
        neighbors = [[pair.index for pair in found] for found in candidates]
        distances = [[pair.dist for pair in found] for found in candidates]
        return neighbors, distances

    def search_batch_radius(
        self,
        other: Any,
        r_min: float,
        r_max: float,
        *,
        parallel: bool = False,
    ) -> BatchResult:
        r_min, r_max = _validate_range(r_min, r_max)
        query_tree = self._query_tree(other, parallel)
        count = query_tree.size()
        if count == 0 or self.size() == 0:
            return [[] for _ in range(count)], [[] for _ in range(count)]
        distance = self._distance_fn(query_tree)
        matches: List[List[IndexDistPair]] = []
        locks = [threading.Lock() for _ in range(count)]

        def _reset() -> None:
            matches[:] = [[] for _ in range(count)]

        def _base_case(ref_point: int, query_point: int) -> None:
            dist = distance(ref_point, query_point)
            if r_min <= dist <= r_max:
                with locks[query_point]:
                    matches[query_point].append(IndexDistPair(dist, ref_point))

        def _score(ref_node: IndexNode, query_node: IndexNode, previous: Score) -> Score:
            if previous is not None:
                return previous
            lower = ref_node.min_node_distance(query_node)
            if lower > r_max:
                return None
            upper = ref_node.max_node_distance(query_node)
            if upper < r_min:
                return None
            if r_min <= lower and upper <= r_max:
                # every pair below qualifies: enumerate directly and stop descending
                ref_points = list(ref_node.descendant_points())
                for query_point in query_node.descendant_points():
                    for ref_point in ref_points:
                        _base_case(ref_point, query_point)
                return None
            return lower

        _reset()
        with log_operation(LOGGER, "batch_radius") as op_log:
            # collapsing ref children would re-run the enumeration above
            stats = self._traverse(
                query_tree, _base_case, _score, improved=False, parallel=parallel, reset=_reset
            )
            op_log.add_metadata(
                queries=count,
                r_min=r_min,
                r_max=r_max,
                parallel=parallel,
                mode="dual",
                visited=stats.visited,
                base_cases=stats.base_cases,
                pruned=stats.pruned,
            )
        neighbors: List[List[int]] = []
        distances: List[List[float]] = []
        for found in matches:
            found.sort()
            neighbors.append([pair.index for pair in found])
            distances.append([pair.dist for pair in found])
        return neighbors, distances


def _same_metric(lhs: Any, rhs: Any) -> bool:
    return type(lhs) is type(rhs) and getattr(lhs, "p", None) == getattr(rhs, "p", None)


__all__ = ["DualTree"]

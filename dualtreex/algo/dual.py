"""Dual-tree traversal engine.

``dual_depth_first`` walks a reference tree and a query tree together. For
every node pair it runs the caller's base case over the points both nodes own,
then scores the child pairs and visits the surviving ones most promising
first. Scores are re-evaluated when a pair is popped, so a pair enqueued under
a loose bound can still be skipped once better candidates have been found.

``dual_depth_first_parallel`` runs the same traversal as a fork-join task
graph on a thread pool: each task processes one pair and hands its child
pairs back to a driver loop which submits them, so workers never block on
each other. Below ``fork_depth`` a task finishes its whole subtree serially.
"""

from __future__ import annotations

import math
import threading
from concurrent.futures import (
    FIRST_COMPLETED,
    BrokenExecutor,
    CancelledError,
    Future,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Set, Tuple

from dualtreex.algo.nodes import IndexNode, Score
from dualtreex.core.bounded import BoundedSortedList, IndexDistPair

BaseCase = Callable[[int, int], None]
ScoreFn = Callable[[IndexNode, IndexNode, Score], Score]

# Failures of a parallel run that are retried serially.
PARALLEL_INTERRUPTIONS = (CancelledError, BrokenExecutor, RuntimeError, InterruptedError)

_DEFAULT_FORK_DEPTH = 6


@dataclass
class TraversalStats:
    visited: int = 0
    base_cases: int = 0
    pruned: int = 0

    def merge(self, other: "TraversalStats") -> None:
        self.visited += other.visited
        self.base_cases += other.base_cases
        self.pruned += other.pruned


_Pair = Tuple[float, IndexNode, IndexNode]


def _expand(
    ref: IndexNode,
    query: IndexNode,
    base_case: BaseCase,
    score: ScoreFn,
    improved: bool,
    tie_eps: float,
    stats: TraversalStats,
) -> List[_Pair]:
    """Run the base case for ``(ref, query)`` and return its scored child pairs, best first."""

    stats.visited += 1
    ref_points = ref.owned_points()
    if ref_points:
        for query_point in query.owned_points():
            for ref_point in ref_points:
                base_case(ref_point, query_point)
                stats.base_cases += 1

    pairs: List[_Pair] = []

    def _offer(ref_node: IndexNode, query_node: IndexNode, value: Score) -> None:
        if value is None:
            stats.pruned += 1
        else:
            pairs.append((value, ref_node, query_node))

    ref_children = ref.children()
    query_children = query.children()
    if ref_children and query_children:
        for query_child in query_children:
            provisional = [score(ref_child, query_child, None) for ref_child in ref_children]
            if improved:
                values = [math.inf if value is None else value for value in provisional]
                spread = max(values) - min(values)
                # inf - inf is nan, so fully pruned rows fall through
                if spread <= tie_eps:
                    _offer(ref, query_child, score(ref, query_child, None))
                    continue
            for ref_child, value in zip(ref_children, provisional):
                _offer(ref_child, query_child, value)
    elif query_children:
        for query_child in query_children:
            _offer(ref, query_child, score(ref, query_child, None))
    elif ref_children:
        for ref_child in ref_children:
            _offer(ref_child, query, score(ref_child, query, None))

    pairs.sort(key=lambda pair: pair[0])
    return pairs


def dual_depth_first(
    ref: IndexNode,
    query: IndexNode,
    base_case: BaseCase,
    score: ScoreFn,
    *,
    improved: bool = True,
    tie_eps: float = 1e-13,
    stats: TraversalStats | None = None,
) -> TraversalStats:
    """Traverse ``ref`` x ``query`` depth first, most promising child pair first.

    ``score(ref_node, query_node, previous)`` is called with ``previous=None``
    when a pair is generated and with the earlier score when the pair is about
    to be processed; returning ``None`` prunes the pair. The root pair itself
    is never scored.
    """

    stats = stats if stats is not None else TraversalStats()
    stack: List[Tuple[IndexNode, IndexNode, Score]] = [(ref, query, None)]
    while stack:
        ref_node, query_node, previous = stack.pop()
        if previous is not None and score(ref_node, query_node, previous) is None:
            stats.pruned += 1
            continue
        pairs = _expand(ref_node, query_node, base_case, score, improved, tie_eps, stats)
        for value, ref_child, query_child in reversed(pairs):
            stack.append((ref_child, query_child, value))
    return stats


def dual_depth_first_parallel(
    ref: IndexNode,
    query: IndexNode,
    base_case: BaseCase,
    score: ScoreFn,
    *,
    workers: int,
    improved: bool = True,
    tie_eps: float = 1e-13,
    fork_depth: int = _DEFAULT_FORK_DEPTH,
    stats: TraversalStats | None = None,
) -> TraversalStats:
    """Fork-join version of :func:`dual_depth_first`.

    ``base_case`` and ``score`` are called concurrently and must guard any
    state they share per target (one lock per query point, say).
    """

    stats = stats if stats is not None else TraversalStats()

    def _task(
        ref_node: IndexNode, query_node: IndexNode, previous: Score, depth: int
    ) -> Tuple[List[Tuple[IndexNode, IndexNode, Score, int]], TraversalStats]:
        local = TraversalStats()
        if previous is not None and score(ref_node, query_node, previous) is None:
            local.pruned += 1
            return [], local
        if depth >= fork_depth:
            dual_depth_first(
                ref_node,
                query_node,
                base_case,
                score,
                improved=improved,
                tie_eps=tie_eps,
                stats=local,
            )
            return [], local
        pairs = _expand(ref_node, query_node, base_case, score, improved, tie_eps, local)
        return [(r, q, value, depth + 1) for value, r, q in pairs], local

    with ThreadPoolExecutor(max_workers=workers) as pool:
        pending: Set[Future] = {pool.submit(_task, ref, query, None, 0)}
        try:
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    children, local = future.result()
                    stats.merge(local)
                    for child in children:
                        pending.add(pool.submit(_task, *child))
        finally:
            for future in pending:
                future.cancel()
    return stats


class BoundCache:
    """Per-node k-NN bounds memoised during one traversal.

    Keys are nodes (hashed by identity of the underlying tree node). Reads are
    lock free; ``update_min`` only ever lowers a stored bound.
    """

    def __init__(self) -> None:
        self._values: Dict[IndexNode, float] = {}
        self._lock = threading.Lock()

    def get(self, node: IndexNode | None, default: float = math.inf) -> float:
        if node is None:
            return default
        return self._values.get(node, default)

    def update_min(self, node: IndexNode, value: float) -> None:
        with self._lock:
            current = self._values.get(node)
            if current is None or value < current:
                self._values[node] = value

    def __len__(self) -> int:
        return len(self._values)


def compute_knn_bound(
    node: IndexNode,
    candidates: Sequence[BoundedSortedList[IndexDistPair]],
    cache: BoundCache,
) -> float:
    """Return an upper bound on the k-th neighbour distance of every point under ``node``.

    The bound is the smallest of four:

    1. the largest current k-th distance among the node's own points (infinite
       while any of them has fewer than k candidates), raised to the cached
       bounds of its children;
    2. the smallest current k-th distance among its own points, widened by the
       node's point spread and descendant spread;
    3. each child's cached bound widened by twice the node's descendant
       spread. The tighter ``2 * (spread(node) - spread(child))`` widening
       is not used on purpose: it can fall below the true k-th distance
       when a child is as wide as the node;
    4. the parent's cached bound.

    Finite results are folded into ``cache``.
    """

    owned_max = -math.inf
    owned_min = math.inf
    unfilled = False
    for i in range(node.num_points()):
        found = candidates[node.point(i)]
        if not found.is_full():
            unfilled = True
            continue
        kth = found.last().dist
        owned_max = max(owned_max, kth)
        owned_min = min(owned_min, kth)
    if unfilled:
        owned_max = math.inf

    spread = node.furthest_descendant_distance()
    from_children = math.inf
    bound_1 = owned_max
    for child in node.children():
        cached = cache.get(child)
        bound_1 = max(bound_1, cached)
        from_children = min(from_children, cached + 2.0 * spread)
    if bound_1 == -math.inf:
        bound_1 = math.inf

    bound_2 = owned_min + node.furthest_point_distance() + spread
    bound_4 = cache.get(node.parent())

    final = min(bound_1, bound_2, from_children, bound_4)
    if math.isfinite(final):
        cache.update_min(node, final)
    return final


__all__ = [
    "BaseCase",
    "ScoreFn",
    "TraversalStats",
    "BoundCache",
    "PARALLEL_INTERRUPTIONS",
    "compute_knn_bound",
    "dual_depth_first",
    "dual_depth_first_parallel",
]

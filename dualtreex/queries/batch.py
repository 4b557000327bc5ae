from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from dualtreex.diagnostics import log_operation
from dualtreex.index.base import BatchResult, VectorCollection, _validate_k, _validate_radius
from dualtreex.logging import get_logger

LOGGER = get_logger("queries.batch")


def all_nearest_neighbors(
    collection: VectorCollection,
    queries: Any,
    k: int,
    *,
    parallel: bool = False,
) -> BatchResult:
    """``k`` nearest neighbours in ``collection`` of every query vector."""

    return collection.search_batch_knn(queries, k, parallel=parallel)


def all_eps_neighbors(
    collection: VectorCollection,
    queries: Any,
    radius: float,
    *,
    parallel: bool = False,
) -> BatchResult:
    """Every stored vector within ``radius`` of each query vector."""

    radius = _validate_radius(radius)
    return collection.search_batch_radius(queries, 0.0, radius, parallel=parallel)


@dataclass(frozen=True)
class KthNeighborStats:
    """Summary of the k-th neighbour distance over a set of queries."""

    k: int
    count: int
    mean: float
    variance: float
    minimum: float
    maximum: float

    @property
    def std(self) -> float:
        return float(np.sqrt(self.variance))


def kth_neighbor_stats(
    collection: VectorCollection,
    queries: Any,
    k: int,
    *,
    parallel: bool = False,
) -> KthNeighborStats:
    """Mean, sample variance and range of each query's k-th neighbour distance.

    Useful for picking a radius for :func:`all_eps_neighbors`. ``k`` may not
    exceed the size of ``collection``.
    """

    k = _validate_k(k)
    if k > collection.size():
        raise ValueError(
            f"k={k} exceeds the number of stored vectors ({collection.size()})."
        )
    with log_operation(LOGGER, "kth_neighbor_stats") as op_log:
        _, distances = collection.search_batch_knn(queries, k, parallel=parallel)
        kth = np.asarray([found[k - 1] for found in distances], dtype=np.float64)
        op_log.add_metadata(queries=kth.shape[0], k=k)
    if kth.size == 0:
        nan = float("nan")
        return KthNeighborStats(k=k, count=0, mean=nan, variance=nan, minimum=nan, maximum=nan)
    variance = float(np.var(kth, ddof=1)) if kth.size > 1 else float("nan")
    return KthNeighborStats(
        k=k,
        count=int(kth.size),
        mean=float(kth.mean()),
        variance=variance,
        minimum=float(kth.min()),
        maximum=float(kth.max()),
    )


__all__ = [
    "KthNeighborStats",
    "all_nearest_neighbors",
    "all_eps_neighbors",
    "kth_neighbor_stats",
]

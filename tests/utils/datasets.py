from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
from numpy.random import Generator

from dualtreex.core.metrics import DistanceMetric
from dualtreex.datasets import duplicated_points, gaussian_points, offset_cloud

Array = np.ndarray

SQUARE_POINTS = np.asarray([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [5.0, 5.0]], dtype=np.float64)


def gaussian_dataset(rng: Generator, *, points: int, queries: int, dimension: int) -> Tuple[Array, Array]:
    """Return `(points, queries)` drawn from the same standard Gaussian."""

    return gaussian_points(rng, points, dimension), gaussian_points(rng, queries, dimension)


def brute_force_knn(
    points: Array, queries: Array, k: int, metric: DistanceMetric
) -> Tuple[List[List[int]], List[List[float]]]:
    """Reference k-NN ordered by (distance, index)."""

    dists = metric.pairwise(queries, points)
    neighbors: List[List[int]] = []
    distances: List[List[float]] = []
    for row in dists:
        order = np.lexsort((np.arange(row.shape[0]), row))[:k]
        neighbors.append([int(i) for i in order])
        distances.append([float(row[i]) for i in order])
    return neighbors, distances


def brute_force_radius(
    points: Array, queries: Array, r_min: float, r_max: float, metric: DistanceMetric
) -> Tuple[List[List[int]], List[List[float]]]:
    dists = metric.pairwise(queries, points)
    neighbors: List[List[int]] = []
    distances: List[List[float]] = []
    for row in dists:
        hits = np.flatnonzero((row >= r_min) & (row <= r_max))
        hits = hits[np.lexsort((hits, row[hits]))]
        neighbors.append([int(i) for i in hits])
        distances.append([float(row[i]) for i in hits])
    return neighbors, distances


def assert_distances_match(actual: Sequence[Sequence[float]], expected: Sequence[Sequence[float]]) -> None:
    assert len(actual) == len(expected)
    for got, want in zip(actual, expected):
        np.testing.assert_allclose(got, want, rtol=0.0, atol=1e-9)


__all__ = [
    "SQUARE_POINTS",
    "gaussian_points",
    "gaussian_dataset",
    "duplicated_points",
    "offset_cloud",
    "brute_force_knn",
    "brute_force_radius",
    "assert_distances_match",
]

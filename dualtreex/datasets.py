from __future__ import annotations

from typing import Callable, Dict, Tuple

import numpy as np
from numpy.random import Generator

Array = np.ndarray
DatasetFn = Callable[[Generator, int, int], Array]


def gaussian_points(rng: Generator, count: int, dimension: int) -> Array:
    return rng.normal(size=(max(count, 0), dimension))


def offset_cloud(
    rng: Generator,
    count: int,
    dimension: int,
    *,
    offset: float = 1e4,
    scale: float = 1e-3,
) -> Array:
    """A tight cloud centred far from the origin.

    Pairwise gaps are many orders of magnitude smaller than the norms, which
    is where the squared-norm shortcut for Euclidean distances cancels.
    """

    return offset + rng.normal(scale=scale, size=(max(count, 0), dimension))


def duplicated_points(rng: Generator, count: int, dimension: int, *, copies: int = 3) -> Array:
    """Gaussian rows repeated ``copies`` times in shuffled order."""

    stacked = np.repeat(gaussian_points(rng, count, dimension), copies, axis=0)
    return stacked[rng.permutation(stacked.shape[0])]


def _duplicated(rng: Generator, count: int, dimension: int) -> Array:
    return duplicated_points(rng, -(-count // 2), dimension, copies=2)[:count]


DATASETS: Dict[str, DatasetFn] = {
    "gaussian": gaussian_points,
    "offset": offset_cloud,
    "duplicated": _duplicated,
}


def make_dataset(
    name: str,
    rng: Generator,
    *,
    points: int,
    queries: int,
    dimension: int,
) -> Tuple[Array, Array]:
    """Draw indexed points and queries from the named distribution.

    Queries for ``duplicated`` are drawn from the indexed rows so that exact
    matches occur.
    """

    if name not in DATASETS:
        raise ValueError(f"Unknown dataset '{name}'. Expected one of {sorted(DATASETS)}.")
    reference = DATASETS[name](rng, points, dimension)
    if name == "duplicated" and reference.shape[0] > 0:
        return reference, reference[rng.integers(0, reference.shape[0], size=max(queries, 0))]
    return reference, DATASETS[name](rng, queries, dimension)


__all__ = ["DATASETS", "duplicated_points", "gaussian_points", "make_dataset", "offset_cloud"]

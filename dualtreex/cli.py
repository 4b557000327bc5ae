from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np
from numpy.random import default_rng
import typer
from typing_extensions import Annotated

from dualtreex import config as dx_config
from dualtreex.core.metrics import available_metrics, get_metric
from dualtreex.datasets import DATASETS, make_dataset
from dualtreex.exceptions import DualTreexError
from dualtreex.index.array import VectorArray
from dualtreex.index.kdtree import KDTree
from dualtreex.index.vptree import VPTree

app = typer.Typer(
    add_completion=False,
    pretty_exceptions_enable=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Benchmark dualtreex nearest-neighbour structures.",
)

_TREES = {
    "vptree": VPTree.factory("random"),
    "vptree-sampling": VPTree.factory("sampling"),
    "kdtree": KDTree.factory("variance"),
    "kdtree-incremental": KDTree.factory("incremental"),
}


@dataclass(frozen=True)
class BenchOptions:
    points: int = 4_096
    queries: int = 512
    dimension: int = 3
    k: int = 8
    tree: str = "vptree"
    metric: str = "euclidean"
    parallel: bool = False
    seed: int = 0
    dataset: str = "gaussian"


@dataclass(frozen=True)
class BenchResult:
    method: str
    elapsed_seconds: float
    queries: int
    k: int
    matches_reference: bool

    @property
    def queries_per_second(self) -> float:
        if self.elapsed_seconds <= 0.0:
            return float("inf")
        return self.queries / self.elapsed_seconds

    def render(self) -> str:
        return (
            f"{self.method:<12} {self.elapsed_seconds * 1e3:10.2f}ms "
            f"{self.queries_per_second:12.1f} q/s  k={self.k} "
            f"match={'yes' if self.matches_reference else 'NO'}"
        )


def _timed(fn: Callable[[], Tuple[List[List[int]], List[List[float]]]]):
    start = time.perf_counter()
    result = fn()
    return result, time.perf_counter() - start


def _same_distances(lhs: List[List[float]], rhs: List[List[float]]) -> bool:
    if len(lhs) != len(rhs):
        return False
    return all(
        len(a) == len(b) and np.allclose(a, b, rtol=0.0, atol=1e-9) for a, b in zip(lhs, rhs)
    )


def run_benchmark(options: BenchOptions) -> Tuple[float, List[BenchResult]]:
    """Build the requested tree and time brute force, per-query and dual-tree k-NN.

    Returns the build time and one result per method; every method is checked
    against the brute-force distances.
    """

    if options.tree not in _TREES:
        raise ValueError(f"Unknown tree '{options.tree}'. Expected one of {sorted(_TREES)}.")
    rng = default_rng(options.seed)
    points, queries = make_dataset(
        options.dataset,
        rng,
        points=options.points,
        queries=options.queries,
        dimension=options.dimension,
    )
    metric = get_metric(options.metric)

    start = time.perf_counter()
    tree = _TREES[options.tree](points, metric, parallel=options.parallel)
    build_seconds = time.perf_counter() - start

    brute = VectorArray(points, metric.clone())
    (_, reference), brute_seconds = _timed(
        lambda: brute.search_batch_knn(queries, options.k, parallel=options.parallel)
    )

    def _single() -> Tuple[List[List[int]], List[List[float]]]:
        rows = [tree.search_knn(query, options.k) for query in queries]
        return [list(map(int, idx)) for idx, _ in rows], [list(map(float, d)) for _, d in rows]

    (_, single), single_seconds = _timed(_single)
    (_, dual), dual_seconds = _timed(
        lambda: tree.search_batch_knn(queries, options.k, parallel=options.parallel)
    )

    results = [
        BenchResult("brute-force", brute_seconds, options.queries, options.k, True),
        BenchResult(
            "single", single_seconds, options.queries, options.k, _same_distances(single, reference)
        ),
        BenchResult(
            "dual-tree", dual_seconds, options.queries, options.k, _same_distances(dual, reference)
        ),
    ]
    return build_seconds, results


@app.command()
def bench(
    points: Annotated[int, typer.Option("--points", help="Number of indexed points.")] = 4_096,
    queries: Annotated[int, typer.Option("--queries", help="Number of query points.")] = 512,
    dimension: Annotated[int, typer.Option("--dimension", help="Point dimensionality.")] = 3,
    k: Annotated[int, typer.Option("--k", help="Neighbours per query.")] = 8,
    tree: Annotated[
        str,
        typer.Option("--tree", help=f"Index structure: {', '.join(sorted(_TREES))}."),
    ] = "vptree",
    metric: Annotated[
        str,
        typer.Option("--metric", help=f"Distance metric: {', '.join(available_metrics())}."),
    ] = "euclidean",
    parallel: Annotated[
        bool,
        typer.Option("--parallel/--serial", help="Use the worker pool for build and search."),
    ] = False,
    seed: Annotated[int, typer.Option("--seed", help="Dataset seed.")] = 0,
    dataset: Annotated[
        str,
        typer.Option("--dataset", help=f"Point distribution: {', '.join(sorted(DATASETS))}."),
    ] = "gaussian",
) -> None:
    """Time brute force, single-query and dual-tree batched k-NN on a synthetic dataset."""

    options = BenchOptions(
        points=points,
        queries=queries,
        dimension=dimension,
        k=k,
        tree=tree,
        metric=metric,
        parallel=parallel,
        seed=seed,
        dataset=dataset,
    )
    try:
        build_seconds, results = run_benchmark(options)
    except (DualTreexError, ValueError, KeyError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    typer.echo(
        f"{tree} over {points} points (d={dimension}, metric={metric}, dataset={dataset}) "
        f"built in {build_seconds * 1e3:.2f}ms"
    )
    for result in results:
        typer.echo(result.render())
    if not all(result.matches_reference for result in results):
        raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """Print the active runtime configuration as JSON."""

    typer.echo(json.dumps(dx_config.describe_runtime(), indent=2, sort_keys=True))


def main() -> None:
    app()


__all__ = ["app", "bench", "info", "main", "run_benchmark", "BenchOptions", "BenchResult"]

#!/usr/bin/env python
"""Quick-start guide for dualtreex.

Run with: python -m dualtreex
Benchmarks: python -m dualtreex bench --help

Printing the guide does not import the library, so it starts instantly.
"""

from __future__ import annotations

import sys

QUICKSTART = """\
================================================================================
                                  DUALTREEX
       Vantage-point and k-d trees with dual-tree batched k-NN / range search
================================================================================

BASIC USAGE
-----------
    import numpy as np
    from dualtreex import VPTree, KDTree, get_metric

    points = np.random.randn(10000, 3)
    tree = VPTree(points, get_metric("euclidean"))

    # Single query: (indices, distances) sorted by distance
    idx, dist = tree.search_knn(points[0], k=10)
    idx, dist = tree.search_radius(points[0], radius=0.5)

BATCHED (DUAL-TREE) SEARCH
--------------------------
    queries = np.random.randn(500, 3)
    neighbors, distances = tree.search_batch_knn(queries, k=10)
    neighbors, distances = tree.search_batch_radius(queries, 0.0, 0.5)

    # Either tree type; parallel traversal on a thread pool
    kd = KDTree(points, pivot="variance", parallel=True)
    neighbors, distances = kd.search_batch_knn(queries, k=10, parallel=True)

CONFIGURATION
-------------
    DUALTREEX_METRIC=manhattan        default metric
    DUALTREEX_WORKERS=8               thread-pool size for parallel modes
    DUALTREEX_VP_SELECTION=sampling   vantage-point selection
    DUALTREEX_KD_PIVOT=incremental    k-d split axis selection
    DUALTREEX_LOG_LEVEL=DEBUG         emit per-operation timing lines

BENCHMARKING CLI
----------------
    python -m dualtreex bench --points 8192 --queries 1024 --k 8 --tree kdtree
    python -m dualtreex info          # active runtime configuration

================================================================================
"""


def main() -> None:
    """Print the quick-start guide, or run the CLI when arguments are given."""
    if len(sys.argv) > 1:
        from dualtreex.cli import main as cli_main

        cli_main()
        return
    print(QUICKSTART)


if __name__ == "__main__":
    main()

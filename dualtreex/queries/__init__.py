from .batch import KthNeighborStats, all_eps_neighbors, all_nearest_neighbors, kth_neighbor_stats

__all__ = [
    "KthNeighborStats",
    "all_nearest_neighbors",
    "all_eps_neighbors",
    "kth_neighbor_stats",
]

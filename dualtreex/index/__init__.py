"""Vector collections: brute force, vantage-point tree and k-d tree."""

from .array import VectorArray
from .base import BatchResult, VectorCollection, sort_matches
from .dual import DualTree
from .kdtree import KDNode, KDTree
from .vptree import VPBranch, VPLeaf, VPTree

__all__ = [
    "BatchResult",
    "VectorCollection",
    "VectorArray",
    "DualTree",
    "VPTree",
    "VPBranch",
    "VPLeaf",
    "KDTree",
    "KDNode",
    "sort_matches",
]

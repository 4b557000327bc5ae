"""Node abstraction shared by every tree that takes part in dual-tree traversal.

A node *owns* zero or more points (indices into its tree's vectors) and has
zero or more children. Bounds are expressed around a single *center* vector:
``furthest_point_distance`` (rho) bounds the distance from the center to the
node's own points, ``furthest_descendant_distance`` (lambda) bounds it for
every point in the subtree. Both bounds need the triangle inequality, which
every tree participating in traversal already requires of its metric.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterator, List, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from dualtreex.index.base import VectorCollection

# ``None`` means the node pair can be skipped entirely.
Score = Optional[float]

# Relative widening of node-to-node bounds so rounding in the centre distance
# never turns them inadmissible (exact self matches at radius 0 depend on it).
BOUND_SLACK = 1e-12


class IndexNode(ABC):
    __slots__ = ()

    @property
    @abstractmethod
    def owner(self) -> "VectorCollection":
        """The collection whose vectors this node's point indices refer to."""

    @abstractmethod
    def parent(self) -> Optional["IndexNode"]:
        ...

    @abstractmethod
    def num_children(self) -> int:
        ...

    @abstractmethod
    def child(self, index: int) -> "IndexNode":
        ...

    @abstractmethod
    def num_points(self) -> int:
        ...

    @abstractmethod
    def point(self, index: int) -> int:
        ...

    @abstractmethod
    def center(self) -> int:
        """Index of the vector the distance bounds are measured from."""

    @abstractmethod
    def furthest_point_distance(self) -> float:
        ...

    @abstractmethod
    def furthest_descendant_distance(self) -> float:
        ...

    def has_children(self) -> bool:
        return self.num_children() > 0

    def children(self) -> List["IndexNode"]:
        return [self.child(i) for i in range(self.num_children())]

    def owned_points(self) -> List[int]:
        return [self.point(i) for i in range(self.num_points())]

    def descendant_points(self) -> Iterator[int]:
        stack: List[IndexNode] = [self]
        while stack:
            node = stack.pop()
            for i in range(node.num_points()):
                yield node.point(i)
            stack.extend(node.children())

    def center_distance(self, other: "IndexNode") -> float:
        mine = self.owner
        theirs = other.owner
        a = self.center()
        b = other.center()
        cache_a = mine.acceleration_cache
        cache_b = theirs.acceleration_cache
        if cache_a is None or cache_b is None:
            return mine.metric.dist(mine.points[a], theirs.points[b])
        return mine.metric.dist_cached(mine.points[a], cache_a[a], theirs.points[b], cache_b[b])

    def min_node_distance(self, other: "IndexNode") -> float:
        """Lower bound on the distance between any point under ``self`` and under ``other``."""

        center = self.center_distance(other)
        spread = self.furthest_descendant_distance() + other.furthest_descendant_distance()
        gap = center - spread - BOUND_SLACK * (center + spread)
        return max(gap, 0.0)

    def max_node_distance(self, other: "IndexNode") -> float:
        """Upper bound on the distance between any point under ``self`` and under ``other``."""

        reach = (
            self.center_distance(other)
            + self.furthest_descendant_distance()
            + other.furthest_descendant_distance()
        )
        return reach * (1.0 + BOUND_SLACK)


class SelfAsChildNode(IndexNode):
    """Expose a tree whose branch nodes own points as one where only leaves do.

    A wrapped branch node owns no points and gets one extra child: a copy of
    itself acting as a leaf that holds the branch's own points.
    """

    __slots__ = ("as_leaf", "wrapping")

    def __init__(self, wrapping: IndexNode, as_leaf: bool | None = None) -> None:
        self.wrapping = wrapping
        self.as_leaf = (not wrapping.has_children()) if as_leaf is None else as_leaf

    @property
    def owner(self) -> "VectorCollection":
        return self.wrapping.owner

    def parent(self) -> Optional["SelfAsChildNode"]:
        if self.as_leaf and self.wrapping.has_children():
            return SelfAsChildNode(self.wrapping, as_leaf=False)
        parent = self.wrapping.parent()
        if parent is None:
            return None
        return SelfAsChildNode(parent, as_leaf=False)

    def num_children(self) -> int:
        if self.as_leaf:
            return 0
        return self.wrapping.num_children() + 1

    def child(self, index: int) -> "SelfAsChildNode":
        if self.as_leaf:
            raise IndexError("A node acting as a leaf has no children.")
        if index == self.wrapping.num_children():
            return SelfAsChildNode(self.wrapping, as_leaf=True)
        return SelfAsChildNode(self.wrapping.child(index))

    def num_points(self) -> int:
        return self.wrapping.num_points() if self.as_leaf else 0

    def point(self, index: int) -> int:
        if not self.as_leaf:
            raise IndexError("Branch nodes own no points once wrapped.")
        return self.wrapping.point(index)

    def center(self) -> int:
        return self.wrapping.center()

    def furthest_point_distance(self) -> float:
        return self.wrapping.furthest_point_distance() if self.as_leaf else 0.0

    def furthest_descendant_distance(self) -> float:
        if self.as_leaf:
            return self.wrapping.furthest_point_distance()
        return self.wrapping.furthest_descendant_distance()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SelfAsChildNode):
            return NotImplemented
        return self.as_leaf == other.as_leaf and self.wrapping is other.wrapping

    def __hash__(self) -> int:
        return hash((self.as_leaf, id(self.wrapping)))

    def __repr__(self) -> str:
        return f"SelfAsChildNode(as_leaf={self.as_leaf}, wrapping={self.wrapping!r})"


__all__ = ["IndexNode", "SelfAsChildNode", "Score", "BOUND_SLACK"]

from __future__ import annotations

import bisect
import threading
from typing import Generic, Iterator, List, NamedTuple, Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class IndexDistPair(NamedTuple):
    """A candidate neighbour. Orders by distance, then by index."""

    dist: float
    index: int


class BoundedSortedList(Generic[T]):
    """Ascending list that keeps at most ``max_size`` of the smallest items.

    ``add`` is serialised on a per-instance lock so that concurrent traversal
    tasks can feed candidates into the same query's list.
    """

    __slots__ = ("_items", "_max_size", "_lock")

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive.")
        self._items: List[T] = []
        self._max_size = int(max_size)
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def is_full(self) -> bool:
        return len(self._items) >= self._max_size

    def add(self, item: T) -> bool:
        """Insert ``item`` if it belongs among the kept items; return whether it did."""

        with self._lock:
            items = self._items
            if len(items) >= self._max_size:
                if not item < items[-1]:
                    return False
                bisect.insort(items, item)
                items.pop()
                return True
            bisect.insort(items, item)
            return True

    def first(self) -> T:
        return self._items[0]

    def last(self) -> T:
        return self._items[-1]

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __repr__(self) -> str:
        return f"BoundedSortedList(max_size={self._max_size}, items={self._items!r})"


def index_table(keys: Sequence[float], tiebreak: Sequence[int] | None = None) -> np.ndarray:
    """Return the permutation that sorts ``keys`` ascending.

    Equal keys keep their relative order unless ``tiebreak`` is given, in
    which case they are ordered by it.
    """

    keys_arr = np.asarray(keys, dtype=np.float64)
    if tiebreak is None:
        return np.argsort(keys_arr, kind="stable")
    return np.lexsort((np.asarray(tiebreak, dtype=np.int64), keys_arr))


def apply_index_table(order: np.ndarray, *values: List) -> None:
    """Reorder each list in ``values`` in place according to ``order``."""

    for target in values:
        reordered = [target[int(i)] for i in order]
        target[:] = reordered


__all__ = [
    "IndexDistPair",
    "BoundedSortedList",
    "index_table",
    "apply_index_table",
]

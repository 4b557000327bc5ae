import threading

import numpy as np
import pytest

from dualtreex.core.bounded import BoundedSortedList, IndexDistPair, apply_index_table, index_table
from dualtreex.index import sort_matches


def test_bounded_list_keeps_smallest_items_sorted():
    found = BoundedSortedList(3)
    for dist, index in [(5.0, 0), (1.0, 1), (3.0, 2), (0.5, 3), (4.0, 4)]:
        found.add(IndexDistPair(dist, index))

    assert found.is_full()
    assert [pair.index for pair in found] == [3, 1, 2]
    assert found.first().dist == 0.5
    assert found.last().dist == 3.0
    assert len(found) == 3


def test_bounded_list_rejects_items_not_better_than_last():
    found = BoundedSortedList(2)
    found.add(IndexDistPair(1.0, 5))
    found.add(IndexDistPair(2.0, 6))

    assert found.add(IndexDistPair(2.0, 7)) is False
    assert found.add(IndexDistPair(2.0, 1)) is True
    assert [pair.index for pair in found] == [5, 1]


def test_bounded_list_requires_positive_capacity():
    with pytest.raises(ValueError):
        BoundedSortedList(0)


def test_bounded_list_concurrent_adds():
    found = BoundedSortedList(10)
    rng = np.random.default_rng(0)
    values = rng.random(4_000)

    def _feed(offset: int) -> None:
        for i in range(offset, values.shape[0], 4):
            found.add(IndexDistPair(float(values[i]), i))

    threads = [threading.Thread(target=_feed, args=(offset,)) for offset in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    expected = np.argsort(values, kind="stable")[:10]
    assert [pair.index for pair in found] == [int(i) for i in expected]


def test_index_table_breaks_ties_with_tiebreak():
    keys = [2.0, 1.0, 2.0, 1.0]

    assert index_table(keys).tolist() == [1, 3, 0, 2]
    assert index_table(keys, [9, 8, 7, 6]).tolist() == [3, 1, 2, 0]


def test_apply_index_table_reorders_in_place():
    indices = [4, 7, 1]
    distances = [0.3, 0.1, 0.2]

    apply_index_table(index_table(distances), indices, distances)

    assert indices == [7, 1, 4]
    assert distances == [0.1, 0.2, 0.3]


def test_sort_matches_orders_by_distance_then_index():
    indices = [5, 2, 9, 1]
    distances = [0.4, 0.1, 0.1, 0.0]

    sort_matches(indices, distances)

    assert indices == [1, 2, 9, 5]
    assert distances == [0.0, 0.1, 0.1, 0.4]

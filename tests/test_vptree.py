import numpy as np
import pytest

from dualtreex.core.metrics import CosineDistance, get_metric
from dualtreex.exceptions import IncompatibleMetricError
from dualtreex.index import VectorArray, VPBranch, VPLeaf, VPTree
from tests.utils.datasets import (
    SQUARE_POINTS,
    assert_distances_match,
    brute_force_knn,
    brute_force_radius,
    duplicated_points,
    gaussian_dataset,
    offset_cloud,
)


def _walk(node):
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, VPBranch):
            stack.extend([current.left, current.right])


def _subtree_indices(node):
    found = []
    for current in _walk(node):
        if isinstance(current, VPBranch):
            found.append(current.vantage)
        else:
            found.extend(int(p) for p in current.points)
    return found


def test_square_points_knn_and_radius():
    tree = VPTree(SQUARE_POINTS, get_metric("euclidean"), seed=0)

    indices, distances = tree.search_knn([0.0, 0.0], k=2)
    assert indices[0] == 0
    assert np.allclose(distances, [0.0, 1.0])

    indices, _ = tree.search_radius([0.0, 0.0], radius=1.5)
    assert sorted(indices.tolist()) == [0, 1, 2]


@pytest.mark.parametrize("metric_name", ["euclidean", "manhattan", "chebyshev"])
@pytest.mark.parametrize("selection", ["random", "sampling"])
def test_knn_matches_brute_force(metric_name, selection):
    rng = np.random.default_rng(4)
    points, queries = gaussian_dataset(rng, points=300, queries=25, dimension=3)
    metric = get_metric(metric_name)
    tree = VPTree(points, metric, selection=selection, sample_size=20, search_iterations=8, seed=1)

    rows = [tree.search_knn(query, 5) for query in queries]
    expected_neighbors, expected_distances = brute_force_knn(points, queries, 5, metric)

    assert [idx.tolist() for idx, _ in rows] == expected_neighbors
    assert_distances_match([dist for _, dist in rows], expected_distances)


@pytest.mark.parametrize("metric_name", ["euclidean", "manhattan"])
def test_radius_matches_brute_force(metric_name):
    rng = np.random.default_rng(6)
    points, queries = gaussian_dataset(rng, points=250, queries=20, dimension=2)
    metric = get_metric(metric_name)
    tree = VPTree(points, metric, seed=3)

    rows = [tree.search_radius(query, 0.6) for query in queries]
    expected_neighbors, expected_distances = brute_force_radius(points, queries, 0.0, 0.6, metric)

    assert [idx.tolist() for idx, _ in rows] == expected_neighbors
    assert_distances_match([dist for _, dist in rows], expected_distances)


def test_offset_cloud_matches_vector_array():
    rng = np.random.default_rng(7)
    points = offset_cloud(rng, 300, 3)
    queries = offset_cloud(rng, 20, 3)
    metric = get_metric("euclidean")
    tree = VPTree(points, metric, seed=0)
    brute = VectorArray(points, metric.clone())

    for query in queries:
        indices, distances = tree.search_knn(query, 3)
        expected_indices, expected_distances = brute.search_knn(query, 3)
        assert indices.tolist() == expected_indices.tolist()
        np.testing.assert_allclose(distances, expected_distances, rtol=1e-9, atol=0.0)
        assert distances[0] > 0.0

    neighbors, distances = tree.search_batch_knn(queries, 3)
    expected_neighbors, expected_distances = brute.search_batch_knn(queries, 3)
    assert neighbors == expected_neighbors
    for got, want in zip(distances, expected_distances):
        np.testing.assert_allclose(got, want, rtol=1e-9, atol=0.0)


def test_structure_partitions_every_point_once():
    rng = np.random.default_rng(9)
    points, _ = gaussian_dataset(rng, points=200, queries=0, dimension=4)
    tree = VPTree(points, seed=2, max_leaf_size=7)

    indices = _subtree_indices(tree.root)

    assert sorted(indices) == list(range(200))
    for node in _walk(tree.root):
        if isinstance(node, VPLeaf):
            assert 1 <= node.num_points() <= 7


def test_branch_distance_ranges_hold():
    rng = np.random.default_rng(10)
    points, _ = gaussian_dataset(rng, points=150, queries=0, dimension=3)
    metric = get_metric("euclidean")
    tree = VPTree(points, metric, seed=5)

    for node in _walk(tree.root):
        if not isinstance(node, VPBranch):
            continue
        vantage = points[node.vantage]
        left = [metric.dist(vantage, points[i]) for i in _subtree_indices(node.left)]
        right = [metric.dist(vantage, points[i]) for i in _subtree_indices(node.right)]
        assert node.left_low - 1e-9 <= min(left) and max(left) <= node.left_high + 1e-9
        assert node.right_low - 1e-9 <= min(right) and max(right) <= node.right_high + 1e-9
        assert node.left_high <= node.right_low + 1e-9
        assert node.furthest_descendant_distance() == pytest.approx(max(left + right))


def test_leaf_bounds_record_distance_to_parent_vantage():
    rng = np.random.default_rng(12)
    points, _ = gaussian_dataset(rng, points=60, queries=0, dimension=2)
    metric = get_metric("euclidean")
    tree = VPTree(points, metric, seed=0)

    for node in _walk(tree.root):
        if isinstance(node, VPLeaf):
            vantage = points[node.parent().vantage]
            for point, bound in zip(node.points, node.bounds):
                assert bound == pytest.approx(metric.dist(vantage, points[point]))


def test_small_tree_is_a_single_leaf_without_bounds():
    tree = VPTree(SQUARE_POINTS, seed=0)

    assert isinstance(tree.root, VPLeaf)
    assert tree.root.parent() is None
    assert np.all(np.isnan(tree.root.bounds))


def test_max_leaf_size_is_clamped():
    tree = VPTree(SQUARE_POINTS, max_leaf_size=1)

    assert tree.max_leaf_size == 5


def test_duplicate_points_are_all_found():
    rng = np.random.default_rng(14)
    points = duplicated_points(rng, 40, 3, copies=4)
    tree = VPTree(points, seed=7)

    for query in points[:10]:
        indices, distances = tree.search_radius(query, 1e-9)
        assert len(indices) == 4
        assert np.allclose(distances, 0.0)
        assert np.allclose(points[indices], query)


def test_non_metric_distance_is_rejected():
    with pytest.raises(IncompatibleMetricError):
        VPTree(SQUARE_POINTS, CosineDistance())


def test_unknown_selection_is_rejected():
    with pytest.raises(ValueError):
        VPTree(SQUARE_POINTS, selection="median")


def test_clone_answers_identically_and_is_independent():
    rng = np.random.default_rng(15)
    points, queries = gaussian_dataset(rng, points=120, queries=10, dimension=3)
    tree = VPTree(points, seed=4)

    clone = tree.clone()

    assert clone.root is not tree.root
    assert clone.root.owner is clone
    for query in queries:
        lhs = tree.search_knn(query, 3)
        rhs = clone.search_knn(query, 3)
        assert lhs[0].tolist() == rhs[0].tolist()
    twice = clone.clone()
    assert _subtree_indices(twice.root) == _subtree_indices(tree.root)


def test_parallel_build_answers_like_serial():
    rng = np.random.default_rng(16)
    points, queries = gaussian_dataset(rng, points=400, queries=20, dimension=3)
    metric = get_metric("euclidean")
    tree = VPTree(points, metric, seed=1, parallel=True)

    assert sorted(_subtree_indices(tree.root)) == list(range(400))
    neighbors = [tree.search_knn(query, 3)[0].tolist() for query in queries]
    expected, _ = brute_force_knn(points, queries, 3, metric)
    assert neighbors == expected


def test_factory_builds_configured_trees():
    make = VPTree.factory("sampling", sample_size=5, search_iterations=3)

    tree = make(SQUARE_POINTS)

    assert isinstance(tree, VPTree)
    assert tree.selection == "sampling"
    assert tree.sample_size == 5
    assert "sampling" in repr(tree)


def test_empty_tree():
    tree = VPTree(seed=0)

    assert tree.root is None
    assert tree.root_node() is None
    assert tree.search_knn([1.0], 2)[0].shape == (0,)

import numpy as np
import pytest
import scipy.sparse as sp

from dualtreex.core.metrics import get_metric
from dualtreex.exceptions import DimensionMismatchError
from dualtreex.index import VectorArray
from tests.utils.datasets import (
    SQUARE_POINTS,
    assert_distances_match,
    brute_force_knn,
    brute_force_radius,
    gaussian_dataset,
)


def test_knn_on_square_points():
    collection = VectorArray(SQUARE_POINTS, get_metric("euclidean"))

    indices, distances = collection.search_knn([0.0, 0.0], k=2)

    assert indices[0] == 0
    assert set(indices.tolist()) <= {0, 1, 2}
    assert np.allclose(distances, [0.0, 1.0])


def test_radius_on_square_points():
    collection = VectorArray(SQUARE_POINTS, get_metric("euclidean"))

    indices, distances = collection.search_radius([0.0, 0.0], radius=1.5)

    assert sorted(indices.tolist()) == [0, 1, 2]
    assert np.all(np.diff(distances) >= 0.0)


def test_k_larger_than_collection_returns_everything():
    collection = VectorArray(SQUARE_POINTS)

    indices, _ = collection.search_knn([5.0, 5.0], k=10)

    assert indices.tolist()[0] == 3
    assert sorted(indices.tolist()) == [0, 1, 2, 3]


def test_insert_grows_collection():
    collection = VectorArray(metric=get_metric("manhattan"))

    assert collection.size() == 0
    assert collection.insert([1.0, 1.0]) == 0
    collection.insert_all([[2.0, 2.0], [0.0, 0.0]])

    assert len(collection) == 3
    assert collection.dimension == 2
    assert collection.points.shape == (3, 2)
    indices, distances = collection.search_knn([0.1, 0.0], k=1)
    assert indices.tolist() == [2]
    assert distances[0] == pytest.approx(0.1)


def test_insert_rejects_wrong_dimension():
    collection = VectorArray([[0.0, 0.0]])

    with pytest.raises(DimensionMismatchError):
        collection.insert([1.0, 2.0, 3.0])


@pytest.mark.parametrize("k", [0, -1, 2.5, True])
def test_invalid_k_is_rejected(k):
    collection = VectorArray(SQUARE_POINTS)

    with pytest.raises(ValueError):
        collection.search_knn([0.0, 0.0], k)


@pytest.mark.parametrize("radius", [0.0, -1.0, float("nan")])
def test_invalid_radius_is_rejected(radius):
    collection = VectorArray(SQUARE_POINTS)

    with pytest.raises(ValueError):
        collection.search_radius([0.0, 0.0], radius)


def test_query_dimension_mismatch():
    collection = VectorArray(SQUARE_POINTS)

    with pytest.raises(DimensionMismatchError):
        collection.search_knn([0.0, 0.0, 0.0], 1)
    with pytest.raises(DimensionMismatchError):
        collection.search_batch_knn(np.zeros((2, 3)), 1)


def test_empty_collection_returns_empty_results():
    collection = VectorArray()

    indices, distances = collection.search_knn([1.0, 2.0], 3)
    assert indices.shape == (0,)
    assert distances.shape == (0,)

    neighbors, dists = collection.search_batch_knn(np.zeros((2, 3)), 1)
    assert neighbors == [[], []]
    assert dists == [[], []]


def test_search_requires_exactly_one_mode():
    collection = VectorArray(SQUARE_POINTS)

    with pytest.raises(ValueError):
        collection.search([0.0, 0.0])
    with pytest.raises(ValueError):
        collection.search([0.0, 0.0], k=1, radius=1.0)
    indices, _ = collection.search([0.0, 0.0], radius=1.0)
    assert sorted(indices.tolist()) == [0, 1, 2]


def test_vector_results_return_stored_rows():
    collection = VectorArray(SQUARE_POINTS)

    found = collection.search_knn_vectors([4.0, 4.0], 1)

    assert len(found) == 1
    vector, dist = found[0]
    assert np.allclose(vector, [5.0, 5.0])
    assert dist == pytest.approx(np.sqrt(2.0))
    assert len(collection.search_radius_vectors([0.0, 0.0], 1.0)) == 3


def test_sparse_input_is_densified():
    dense = np.array([[0.0, 1.0, 0.0], [2.0, 0.0, 0.0], [0.0, 0.0, 3.0]])
    collection = VectorArray(sp.csr_matrix(dense))

    indices, distances = collection.search_knn(sp.csr_matrix([[0.0, 1.0, 0.1]]), 1)

    assert indices.tolist() == [0]
    assert distances[0] == pytest.approx(0.1)


@pytest.mark.parametrize("parallel", [False, True])
def test_batch_knn_matches_brute_force(parallel):
    rng = np.random.default_rng(21)
    points, queries = gaussian_dataset(rng, points=120, queries=30, dimension=3)
    metric = get_metric("euclidean")
    collection = VectorArray(points, metric)

    neighbors, distances = collection.search_batch_knn(queries, 4, parallel=parallel)
    expected_neighbors, expected_distances = brute_force_knn(points, queries, 4, metric)

    assert neighbors == expected_neighbors
    assert_distances_match(distances, expected_distances)


def test_batch_radius_window_matches_brute_force():
    rng = np.random.default_rng(8)
    points, queries = gaussian_dataset(rng, points=80, queries=12, dimension=2)
    metric = get_metric("manhattan")
    collection = VectorArray(points, metric)

    neighbors, distances = collection.search_batch_radius(queries, 0.5, 1.5)
    expected_neighbors, expected_distances = brute_force_radius(points, queries, 0.5, 1.5, metric)

    assert neighbors == expected_neighbors
    assert_distances_match(distances, expected_distances)


def test_batch_radius_rejects_inverted_window():
    collection = VectorArray(SQUARE_POINTS)

    with pytest.raises(ValueError):
        collection.search_batch_radius(SQUARE_POINTS, 2.0, 1.0)
    with pytest.raises(ValueError):
        collection.search_batch_radius(SQUARE_POINTS, 0.0, -1.0)


def test_search_batch_dispatches_on_mode():
    collection = VectorArray(SQUARE_POINTS)

    neighbors, _ = collection.search_batch(SQUARE_POINTS, k=1)
    assert neighbors == [[0], [1], [2], [3]]
    neighbors, _ = collection.search_batch(SQUARE_POINTS, r_max=0.0)
    assert neighbors == [[0], [1], [2], [3]]
    with pytest.raises(ValueError):
        collection.search_batch(SQUARE_POINTS)


def test_clone_is_independent():
    collection = VectorArray(SQUARE_POINTS)
    clone = collection.clone()

    clone.insert([9.0, 9.0])

    assert collection.size() == 4
    assert clone.size() == 5
    assert clone.metric is not collection.metric

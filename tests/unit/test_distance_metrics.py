"""
Unit tests for distance metrics.
"""

import numpy as np
import pytest

from cluster_playground.core.distance_metrics import (
    distance,
    distances_to,
    pairwise_distances,
    resolve_metric,
    squared_euclidean_to,
)
from cluster_playground.schemas.data_models import DistanceMetric
from cluster_playground.utils.error_handling import InvalidParameterError

METRICS = ["euclidean", "manhattan", "cosine"]


@pytest.mark.unit
class TestDistanceMetrics:
    """Test suite for point distance functions."""

    def test_euclidean(self):
        assert distance([0, 0], [3, 4], "euclidean") == pytest.approx(5.0)

    def test_manhattan(self):
        assert distance([0, 0], [3, -4], "manhattan") == pytest.approx(7.0)

    def test_cosine_orthogonal_and_parallel(self):
        assert distance([1, 0], [0, 2], "cosine") == pytest.approx(1.0)
        assert distance([1, 1], [2, 2], "cosine") == pytest.approx(0.0, abs=1e-12)

    def test_cosine_zero_vector_is_zero(self):
        """A zero-magnitude vector is at distance 0, not an error."""
        assert distance([0, 0], [3, 4], "cosine") == 0.0
        assert distance([3, 4], [0, 0], "cosine") == 0.0

    def test_n_dimensional_points(self):
        assert distance([1, 2, 3], [4, 6, 3], "euclidean") == pytest.approx(5.0)

    @pytest.mark.parametrize("metric", METRICS)
    def test_symmetry_and_non_negativity(self, metric, random_points):
        """d(a, b) == d(b, a) >= 0 for every metric."""
        points = random_points(25, dim=3, seed=7)
        matrix = pairwise_distances(points, points, metric)

        assert np.all(matrix >= 0)
        np.testing.assert_array_equal(matrix, matrix.T)

    @pytest.mark.parametrize("metric", METRICS)
    def test_vectorised_agrees_with_scalar(self, metric, random_points):
        points = random_points(6, seed=3)
        row = distances_to(points[0], points, metric)
        for j in range(len(points)):
            assert row[j] == pytest.approx(distance(points[0], points[j], metric))

    def test_squared_euclidean(self):
        result = squared_euclidean_to([0, 0], np.array([[3, 4], [1, 1]]))
        np.testing.assert_allclose(result, [25.0, 2.0])

    def test_resolve_metric_case_insensitive(self):
        assert resolve_metric("Euclidean") == DistanceMetric.EUCLIDEAN
        assert resolve_metric(DistanceMetric.COSINE) == DistanceMetric.COSINE

    def test_unknown_metric_is_input_error(self):
        with pytest.raises(InvalidParameterError) as exc_info:
            distance([0, 0], [1, 1], "chebyshev")
        assert exc_info.value.kind == "input"

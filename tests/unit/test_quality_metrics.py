"""
Unit tests for clustering quality assessment.
"""

import numpy as np
import pytest

from cluster_playground.core.quality_metrics import (
    NEUTRAL_INTERNAL_SCORE,
    QualityAssessor,
    recommendation_for,
)
from cluster_playground.schemas.data_models import Cluster


def truth_groups(n_blobs=3, size=30):
    return [list(range(b * size, (b + 1) * size)) for b in range(n_blobs)]


@pytest.mark.unit
class TestQualityAssessor:
    """Test suite for QualityAssessor."""

    def test_perfect_clustering_with_labels(self, labelled_blobs):
        points, labels = labelled_blobs

        report = QualityAssessor().evaluate(points, truth_groups(), labels)

        assert report.external is not None
        assert report.external.adjusted_rand_index == pytest.approx(1.0)
        assert report.external.normalized_mutual_info == pytest.approx(1.0)
        assert report.external.v_measure == pytest.approx(1.0)
        assert report.internal.silhouette_score > 0.7
        assert report.internal.n_clusters == 3
        assert report.summary.recommendation == "excellent"

    def test_internal_only_without_labels(self, labelled_blobs):
        points, _ = labelled_blobs

        report = QualityAssessor().evaluate(points, truth_groups())

        assert report.external is None
        assert report.summary.external_score is None
        assert report.summary.overall_score == pytest.approx(report.summary.internal_score)
        assert report.internal.davies_bouldin_index > 0
        assert report.internal.calinski_harabasz_index > 100

    def test_accepts_cluster_models(self, two_blobs):
        clusters = [Cluster(indices=(0, 1, 2)), Cluster(indices=(3, 4, 5))]
        report = QualityAssessor().evaluate(two_blobs, clusters)
        assert report.internal.n_clusters == 2
        assert report.internal.silhouette_score > 0.8

    def test_single_cluster_is_neutral(self, two_blobs):
        report = QualityAssessor().evaluate(two_blobs, [list(range(6))])

        assert report.internal.silhouette_score is None
        assert report.summary.internal_score == NEUTRAL_INTERNAL_SCORE
        assert report.summary.recommendation == "poor"

    def test_every_point_its_own_cluster(self, two_blobs):
        report = QualityAssessor().evaluate(two_blobs, [[i] for i in range(6)])
        assert report.internal.silhouette_score is None
        assert report.internal.within_cluster_ss == 0.0

    def test_noise_excluded_from_internal_metrics(self, two_blobs):
        report = QualityAssessor().evaluate(two_blobs, [[0, 1], [3, 4]])

        assert report.internal.noise_ratio == pytest.approx(2 / 6)
        assert report.internal.n_clusters == 2
        # two clusters of two points each: 2 <= 2 <= 3
        assert report.internal.silhouette_score is not None

    def test_sums_of_squares(self, collinear_points):
        report = QualityAssessor().evaluate(collinear_points, [[0, 1], [2, 3]])

        assert report.internal.within_cluster_ss == pytest.approx(1.0)
        assert report.internal.between_cluster_ss == pytest.approx(4.0)

    def test_wrong_labels_score_low(self, labelled_blobs):
        points, labels = labelled_blobs
        rng = np.random.default_rng(0)
        shuffled = rng.permutation(90)
        groups = [shuffled[:30].tolist(), shuffled[30:60].tolist(), shuffled[60:].tolist()]

        report = QualityAssessor().evaluate(points, groups, labels)

        assert report.external.adjusted_rand_index < 0.2
        assert report.summary.overall_score < 0.6

    def test_numeric_ground_truth(self, two_blobs):
        report = QualityAssessor().evaluate(two_blobs, [[0, 1, 2], [3, 4, 5]], [1, 1, 1, 2, 2, 2])
        assert report.external.homogeneity == pytest.approx(1.0)
        assert report.external.completeness == pytest.approx(1.0)


@pytest.mark.unit
class TestRecommendation:
    """Test suite for the verbal rating bands."""

    @pytest.mark.parametrize(
        "score,expected",
        [
            (0.95, "excellent"),
            (0.8, "excellent"),
            (0.75, "good"),
            (0.65, "fair"),
            (0.5, "poor"),
            (0.2, "very_poor"),
        ],
    )
    def test_bands(self, score, expected):
        assert recommendation_for(score) == expected

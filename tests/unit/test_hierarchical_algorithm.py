"""
Unit tests for agglomerative hierarchical clustering.

Tests the HierarchicalAlgorithm class including:
- Merge order and dendrogram records
- Linkage criteria
- Default cluster count
- Dendrogram cuts
- Progress reporting and cancellation
"""

import numpy as np
import pytest

from cluster_playground.core.base_clustering import ClusteringConfig
from cluster_playground.core.hierarchical_algorithm import (
    LINKAGES,
    HierarchicalAlgorithm,
    average_linkage,
    complete_linkage,
    cut_dendrogram,
    default_num_clusters,
    single_linkage,
    ward_linkage,
)
from cluster_playground.utils.error_handling import InvalidParameterError, JobCancelledError


def make_hierarchical(progress_interval=10, **params):
    return HierarchicalAlgorithm(
        ClusteringConfig(algorithm_name="hierarchical", params=params, progress_interval=progress_interval)
    )


@pytest.mark.unit
class TestLinkageCriteria:
    """Test suite for the pure linkage functions."""

    def test_registry(self):
        assert set(LINKAGES) == {"single", "complete", "average", "ward"}
        assert LINKAGES["single"] is single_linkage

    def test_point_linkages(self):
        a = np.array([[0.0, 0.0], [1.0, 0.0]])
        b = np.array([[3.0, 0.0], [5.0, 0.0]])

        assert single_linkage(a, b, "euclidean") == pytest.approx(2.0)
        assert complete_linkage(a, b, "euclidean") == pytest.approx(5.0)
        assert average_linkage(a, b, "euclidean") == pytest.approx((3 + 5 + 2 + 4) / 4)

    def test_ward_singletons_is_half_squared_distance(self):
        a = np.array([[0.0, 0.0]])
        b = np.array([[3.0, 4.0]])
        assert ward_linkage(a, b, "euclidean") == pytest.approx(12.5)

    def test_ward_ignores_metric(self):
        a = np.array([[0.0, 0.0], [0.0, 2.0]])
        b = np.array([[4.0, 1.0]])
        assert ward_linkage(a, b, "manhattan") == ward_linkage(a, b, "euclidean")

    @pytest.mark.parametrize("n,expected", [(1, 1), (2, 1), (6, 2), (8, 2), (50, 5), (100, 8)])
    def test_default_num_clusters(self, n, expected):
        assert default_num_clusters(n) == expected


@pytest.mark.unit
class TestHierarchicalAlgorithm:
    """Test suite for HierarchicalAlgorithm."""

    def test_init_defaults(self):
        clusterer = make_hierarchical()
        assert clusterer.num_clusters is None
        assert clusterer.linkage == "ward"
        assert clusterer.linkage_function is ward_linkage

    def test_collinear_single_linkage(self, collinear_points):
        """Ties resolve to the first pair in list order; merged clusters go last."""
        result = make_hierarchical(numClusters=2, linkage="single").cluster(collinear_points)

        assert [c.indices for c in result.clusters] == [(0, 1), (2, 3)]
        merges = [(m.cluster1, m.cluster2, m.distance, m.merged_id, m.size) for m in result.dendrogram]
        assert merges == [(0, 1, 1.0, 4, 2), (2, 3, 1.0, 5, 2)]
        assert result.iterations == 2

    def test_merge_to_single_cluster(self, collinear_points):
        result = make_hierarchical(num_clusters=1, linkage="complete").cluster(collinear_points)

        assert [c.indices for c in result.clusters] == [(0, 1, 2, 3)]
        assert [m.distance for m in result.dendrogram] == pytest.approx([1.0, 1.0, 3.0])
        assert result.dendrogram[-1].merged_id == 6
        assert result.dendrogram[-1].size == 4

    def test_ward_separates_blobs(self, two_blobs):
        result = make_hierarchical(num_clusters=2, linkage="ward").cluster(two_blobs)

        groups = {c.indices for c in result.clusters}
        assert groups == {(0, 1, 2), (3, 4, 5)}
        assert result.dendrogram[0].distance == pytest.approx(0.5)

    def test_default_cluster_count(self, two_blobs):
        result = make_hierarchical(linkage="average").cluster(two_blobs)
        assert result.n_clusters == 2

    def test_num_clusters_larger_than_dataset(self, two_blobs):
        result = make_hierarchical(num_clusters=20).cluster(two_blobs)

        assert result.n_clusters == 6
        assert result.dendrogram == ()
        assert result.iterations == 0

    @pytest.mark.parametrize("linkage", ["single", "complete", "average", "ward"])
    def test_merge_count_and_coverage(self, linkage, random_points):
        points = random_points(30, seed=12)
        result = make_hierarchical(num_clusters=4, linkage=linkage).cluster(points)

        assert result.n_clusters == 4
        assert len(result.dendrogram) == 30 - 4
        indices = sorted(i for c in result.clusters for i in c.indices)
        assert indices == list(range(30))

    @pytest.mark.parametrize("linkage", ["single", "complete", "average", "ward"])
    def test_merge_distances_non_decreasing(self, linkage, random_points):
        points = random_points(25, seed=21)
        result = make_hierarchical(num_clusters=1, linkage=linkage).cluster(points)

        distances = [m.distance for m in result.dendrogram]
        for previous, current in zip(distances, distances[1:]):
            assert current >= previous - 1e-9

    def test_merged_ids_follow_point_count(self, random_points):
        result = make_hierarchical(num_clusters=1, linkage="single").cluster(random_points(10))
        assert [m.merged_id for m in result.dendrogram] == list(range(10, 19))
        assert result.dendrogram[-1].size == 10

    def test_cosine_metric(self):
        points = np.array([[1.0, 0.0], [2.0, 0.1], [0.0, 1.0], [0.1, 3.0]])
        result = make_hierarchical(num_clusters=2, linkage="average", metric="cosine").cluster(points)
        assert {c.indices for c in result.clusters} == {(0, 1), (2, 3)}

    def test_progress_cadence(self, collinear_points, reporter):
        """Progress when the remaining cluster count is a multiple of the interval."""
        make_hierarchical(progress_interval=2, num_clusters=1, linkage="single").cluster(
            collinear_points, reporter
        )
        assert reporter.reports == [{"clusters_remaining": 2, "target_clusters": 1, "merges": 2}]

    def test_cancellation(self, random_points, cancelling_reporter):
        with pytest.raises(JobCancelledError):
            make_hierarchical(num_clusters=1).cluster(random_points(40), cancelling_reporter(cancel_after=5))

    @pytest.mark.parametrize("params", [{"num_clusters": 0}, {"linkage": "median"}])
    def test_invalid_parameters(self, params):
        with pytest.raises(InvalidParameterError):
            make_hierarchical(**params)


@pytest.mark.unit
class TestCutDendrogram:
    """Test suite for rebuilding flat clusterings from a dendrogram."""

    @pytest.fixture
    def full_tree(self, collinear_points):
        """Complete linkage down to one cluster: merges at 1.0, 1.0 and 3.0."""
        return make_hierarchical(num_clusters=1, linkage="complete").cluster(collinear_points).dendrogram

    @pytest.mark.parametrize(
        "num_clusters,expected",
        [
            (4, [[0], [1], [2], [3]]),
            (3, [[2], [3], [0, 1]]),
            (2, [[0, 1], [2, 3]]),
            (1, [[0, 1, 2, 3]]),
        ],
    )
    def test_cut_by_cluster_count(self, full_tree, num_clusters, expected):
        assert cut_dendrogram(full_tree, 4, num_clusters=num_clusters) == expected

    @pytest.mark.parametrize(
        "height,expected",
        [
            (0.5, [[0], [1], [2], [3]]),
            (1.0, [[0, 1], [2, 3]]),
            (2.9, [[0, 1], [2, 3]]),
            (3.0, [[0, 1, 2, 3]]),
        ],
    )
    def test_cut_by_height(self, full_tree, height, expected):
        assert cut_dendrogram(full_tree, 4, height=height) == expected

    def test_cut_partial_tree_by_height(self, collinear_points):
        dendrogram = make_hierarchical(num_clusters=2, linkage="single").cluster(collinear_points).dendrogram
        assert cut_dendrogram(dendrogram, 4, height=10.0) == [[0, 1], [2, 3]]

    def test_cut_below_recorded_range(self, collinear_points):
        dendrogram = make_hierarchical(num_clusters=2, linkage="single").cluster(collinear_points).dendrogram
        with pytest.raises(InvalidParameterError):
            cut_dendrogram(dendrogram, 4, num_clusters=1)

    @pytest.mark.parametrize("kwargs", [{}, {"num_clusters": 2, "height": 1.0}, {"num_clusters": 5}])
    def test_invalid_cut_arguments(self, full_tree, kwargs):
        with pytest.raises(InvalidParameterError):
            cut_dendrogram(full_tree, 4, **kwargs)

    @pytest.mark.parametrize("target", [1, 3, 7])
    def test_cut_matches_run_stopped_at_count(self, random_points, target):
        """A cut of the full tree equals a run that stopped at that count."""
        points = random_points(30, seed=11)
        full = make_hierarchical(num_clusters=1, linkage="average").cluster(points)
        stopped = make_hierarchical(num_clusters=target, linkage="average").cluster(points)

        assert cut_dendrogram(full.dendrogram, 30, num_clusters=target) == [
            list(c.indices) for c in stopped.clusters
        ]

"""
Agglomerative Hierarchical Clustering Algorithm Implementation.

Starts from singletons and repeatedly merges the closest pair of clusters
under a linkage criterion until `num_clusters` remain, recording each merge
in a dendrogram. cut_dendrogram() rebuilds the flat clustering at any
earlier cluster count or at a linkage height.

Merge order is pinned: the current clusters form a list where a merged
cluster is appended at the end, and on equal linkage distance the first
pair (i, j), i < j, in lexicographic list order wins.

Linkage criteria are pure functions of two clusters' points, looked up in
LINKAGES; the merge loop only caches their values between merges.

Agglomerative clustering is ideal for:
- Building hierarchical cluster trees (dendrograms)
- Small to medium datasets
"""

import logging
import math
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from cluster_playground.core.base_clustering import (
    BaseClusteringAlgorithm,
    ClusteringConfig,
    NullReporter,
    ProgressReporter,
)
from cluster_playground.core.centroid_utils import centroid
from cluster_playground.core.distance_metrics import pairwise_distances
from cluster_playground.schemas.data_models import (
    ClusterAlgorithm,
    ClusteringResult,
    DendrogramMerge,
    DistanceMetric,
    HierarchicalParameters,
    LinkageMethod,
)
from cluster_playground.utils.error_handling import InvalidParameterError

logger = logging.getLogger(__name__)

LinkageFunction = Callable[[np.ndarray, np.ndarray, str], float]


# =============================================================================
# Linkage criteria
# =============================================================================


def single_linkage(points_a: np.ndarray, points_b: np.ndarray, metric: str) -> float:
    """Minimum pairwise point distance."""
    return float(np.min(pairwise_distances(points_a, points_b, metric)))


def complete_linkage(points_a: np.ndarray, points_b: np.ndarray, metric: str) -> float:
    """Maximum pairwise point distance."""
    return float(np.max(pairwise_distances(points_a, points_b, metric)))


def average_linkage(points_a: np.ndarray, points_b: np.ndarray, metric: str) -> float:
    """Mean pairwise point distance."""
    return float(np.mean(pairwise_distances(points_a, points_b, metric)))


def _sum_of_squares(points: np.ndarray) -> float:
    diff = points - centroid(points)
    return float(np.sum(diff * diff))


def ward_linkage(points_a: np.ndarray, points_b: np.ndarray, metric: str) -> float:
    """
    Increase in within-cluster sum of squares caused by the merge.

    Always measured with squared euclidean distance to the centroid; the
    point metric does not apply.
    """
    merged = np.vstack([points_a, points_b])
    increase = _sum_of_squares(merged) - _sum_of_squares(points_a) - _sum_of_squares(points_b)
    return max(0.0, increase)


LINKAGES: Dict[str, LinkageFunction] = {
    LinkageMethod.SINGLE.value: single_linkage,
    LinkageMethod.COMPLETE.value: complete_linkage,
    LinkageMethod.AVERAGE.value: average_linkage,
    LinkageMethod.WARD.value: ward_linkage,
}


def default_num_clusters(n_points: int) -> int:
    """Target cluster count when none is given: ceil(sqrt(n / 2))."""
    return max(1, math.ceil(math.sqrt(n_points / 2)))


# =============================================================================
# Dendrogram cut
# =============================================================================


def cut_dendrogram(
    dendrogram: Sequence[DendrogramMerge],
    n_points: int,
    num_clusters: Optional[int] = None,
    height: Optional[float] = None,
) -> List[List[int]]:
    """
    Rebuild a flat clustering from a recorded dendrogram.

    Leaves are the point ids 0..n-1; every merge creates `merged_id`.

    - `num_clusters`: replay the first `n_points - num_clusters` merges, which
      is exactly the clustering the merge loop held at that count. Must lie
      between the run's final cluster count and `n_points`.
    - `height`: keep every subtree whose merge distance is <= `height` whole
      and split the ones above it.

    Args:
        dendrogram: Merges in the order they were made
        n_points: Number of points clustered
        num_clusters: Target cluster count
        height: Cut height (linkage distance)

    Returns:
        Sorted member indices per cluster, ordered by cluster id (surviving
        singletons first, then merged clusters in merge order)

    Raises:
        InvalidParameterError: Neither or both of num_clusters / height given,
            or num_clusters outside the recorded range
    """
    if (num_clusters is None) == (height is None):
        raise InvalidParameterError("Give exactly one of num_clusters or height")

    merges = list(dendrogram)
    if num_clusters is not None:
        lowest = n_points - len(merges)
        if not lowest <= num_clusters <= n_points:
            raise InvalidParameterError(
                f"num_clusters must be between {lowest} and {n_points}, got {num_clusters}",
                details={"num_clusters": num_clusters},
            )
        merges = merges[: n_points - num_clusters]

    children = {m.merged_id: (m.cluster1, m.cluster2) for m in merges}
    heights = {m.merged_id: m.distance for m in merges}
    consumed = {child for pair in children.values() for child in pair}
    roots = [i for i in range(n_points) if i not in consumed]
    roots += [m.merged_id for m in merges if m.merged_id not in consumed]

    if height is None:
        nodes = roots
    else:
        nodes = []
        pending = list(roots)
        while pending:
            node = pending.pop()
            if node < n_points or heights[node] <= height:
                nodes.append(node)
            else:
                pending.extend(children[node])

    groups = []
    for node in sorted(nodes):
        members = []
        pending = [node]
        while pending:
            current = pending.pop()
            if current < n_points:
                members.append(current)
            else:
                pending.extend(children[current])
        groups.append(sorted(members))
    return groups


# =============================================================================
# Algorithm
# =============================================================================


class HierarchicalAlgorithm(BaseClusteringAlgorithm):
    """
    Agglomerative hierarchical clustering implementation.

    Best for: Small datasets where the merge hierarchy matters
    Strengths: Builds a dendrogram, flexible linkage criteria
    Weaknesses: Slow (O(n^3) naive), high memory usage, not scalable
    """

    algorithm = ClusterAlgorithm.HIERARCHICAL
    parameters_model = HierarchicalParameters

    def __init__(self, config: ClusteringConfig):
        """
        Initialize Hierarchical algorithm.

        Args:
            config: Clustering configuration
        """
        super().__init__(config)

        self.num_clusters = self.params.num_clusters
        self.linkage = self.params.linkage
        self.metric = self.params.metric
        self.linkage_function = LINKAGES[self.linkage]

        if self.linkage == LinkageMethod.WARD and self.metric != DistanceMetric.EUCLIDEAN:
            logger.warning(
                f"Ward linkage always uses squared euclidean distance, ignoring metric={self.metric}"
            )

        logger.info(
            f"Initialized Hierarchical: num_clusters={self.num_clusters}, "
            f"linkage={self.linkage}, metric={self.metric}"
        )

    def cluster(
        self,
        data: np.ndarray,
        reporter: Optional[ProgressReporter] = None,
    ) -> ClusteringResult:
        """
        Perform agglomerative clustering.

        Args:
            data: Point matrix (N x D)
            reporter: Progress / cancellation channel

        Returns:
            ClusteringResult with the remaining clusters and the dendrogram
        """
        reporter = reporter or NullReporter()
        points = self._validate_data(data)
        n_points = len(points)

        target = self.num_clusters or default_num_clusters(n_points)
        if target > n_points:
            logger.warning(
                f"Reducing num_clusters from {target} to {n_points} due to small dataset size"
            )
            target = n_points

        if n_points > 2000:
            logger.warning(
                f"Hierarchical clustering on {n_points} points may be slow and "
                "memory-intensive. Consider using K-Means or DBSCAN."
            )

        logger.info(
            f"Starting Hierarchical clustering on {n_points} points (target={target})"
        )
        start = time.perf_counter()

        # Current clusters: (cluster id, member indices), in merge-list order
        clusters: List[Tuple[int, List[int]]] = [(i, [i]) for i in range(n_points)]
        linkage_matrix = self._initial_linkage_matrix(points)
        dendrogram: List[DendrogramMerge] = []
        next_id = n_points

        while len(clusters) > target:
            reporter.check_cancelled()

            # Upper triangle only; argmin scans row-major, i.e. (i, j) order
            candidates = np.where(
                np.triu(np.ones_like(linkage_matrix, dtype=bool), k=1),
                linkage_matrix,
                np.inf,
            )
            flat = int(np.argmin(candidates))
            i, j = divmod(flat, len(clusters))
            merge_distance = float(linkage_matrix[i, j])
            self._ensure_finite(np.array([merge_distance]), "linkage distance")

            id_i, members_i = clusters[i]
            id_j, members_j = clusters[j]
            merged_members = members_i + members_j

            dendrogram.append(
                DendrogramMerge(
                    cluster1=id_i,
                    cluster2=id_j,
                    distance=merge_distance,
                    merged_id=next_id,
                    size=len(merged_members),
                )
            )

            # Drop i and j, append the merged cluster at the end
            keep = [c for c in range(len(clusters)) if c not in (i, j)]
            clusters = [clusters[c] for c in keep]
            linkage_matrix = linkage_matrix[np.ix_(keep, keep)]

            merged_points = points[merged_members]
            new_row = np.array(
                [
                    self.linkage_function(merged_points, points[members], self.metric)
                    for _, members in clusters
                ],
                dtype=float,
            )
            size = len(clusters) + 1
            expanded = np.zeros((size, size))
            expanded[:-1, :-1] = linkage_matrix
            expanded[-1, :-1] = new_row
            expanded[:-1, -1] = new_row
            linkage_matrix = expanded

            clusters.append((next_id, merged_members))
            next_id += 1

            remaining = len(clusters)
            if remaining % self.progress_interval == 0:
                reporter.report(
                    clusters_remaining=remaining,
                    target_clusters=target,
                    merges=len(dendrogram),
                )

        groups = [sorted(members) for _, members in clusters]
        result_clusters = self._build_clusters(groups, points)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            f"Hierarchical created {len(result_clusters)} clusters with "
            f"{len(dendrogram)} merges"
        )

        return ClusteringResult(
            algorithm=self.algorithm,
            n_points=n_points,
            clusters=tuple(result_clusters),
            iterations=len(dendrogram),
            dendrogram=tuple(dendrogram),
            execution_time_ms=elapsed_ms,
        )

    def _initial_linkage_matrix(self, points: np.ndarray) -> np.ndarray:
        """
        Linkage between every pair of singletons.

        For singletons every criterion reduces to the point distance, except
        ward which is half the squared euclidean distance.
        """
        if self.linkage == LinkageMethod.WARD:
            distances = pairwise_distances(points, points, DistanceMetric.EUCLIDEAN)
            return 0.5 * distances * distances
        return pairwise_distances(points, points, self.metric)

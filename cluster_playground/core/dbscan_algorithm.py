"""
DBSCAN Clustering Algorithm Implementation.

Density-based region growing:
- A point's neighbourhood is every other point within `eps` (the point
  itself is not counted)
- Points with at least `min_pts` neighbours are core points and seed or
  extend a cluster breadth-first
- Non-core points start as noise and are promoted to border members when a
  cluster's expansion reaches them; the first cluster to reach a point keeps it

When `eps` or `min_pts` is null it is estimated from the data: `min_pts`
from the dataset size and dimension, `eps` from the elbow of the sorted
k-distance curve (k = min_pts), capped by a k-distance quantile.

DBSCAN is ideal for:
- Arbitrary cluster shapes
- Datasets with outliers
- When the number of clusters is unknown

Neighbour search is a linear scan per point (O(n^2) per run, no spatial
index).
"""

import logging
import math
import time
from collections import deque
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from cluster_playground.core.base_clustering import (
    BaseClusteringAlgorithm,
    ClusteringConfig,
    NullReporter,
    ProgressReporter,
)
from cluster_playground.core.distance_metrics import MetricLike, distances_to, pairwise_distances
from cluster_playground.schemas.data_models import (
    ClusterAlgorithm,
    ClusteringResult,
    DBSCANParameters,
)
from cluster_playground.utils.error_handling import InsufficientDataError

logger = logging.getLogger(__name__)

UNASSIGNED = -1

# Points used for the k-distance curve
ESTIMATION_SAMPLE_SIZE = 1000


# =============================================================================
# Parameter estimation
# =============================================================================


def estimate_min_pts(n_points: int, dimension: int) -> int:
    """min_pts from the dataset shape: max(2, min(2 * dimension, floor(log2 n)))."""
    log_size = int(math.floor(math.log2(n_points))) if n_points > 0 else 0
    return max(2, min(2 * dimension, log_size))


def k_distances(
    points: np.ndarray,
    k: int,
    metric: MetricLike,
    sample_size: int = ESTIMATION_SAMPLE_SIZE,
) -> np.ndarray:
    """
    Distance from each sampled point to its k-th nearest other point.

    The sample is the first `sample_size` points. Returns the distances in
    descending order; empty when the sample has no more than k points.
    """
    sample = points[:sample_size]
    if len(sample) <= k:
        return np.empty(0)
    distances = pairwise_distances(sample, sample, metric)
    np.fill_diagonal(distances, np.inf)
    kth = np.sort(distances, axis=1)[:, k - 1]
    return np.sort(kth)[::-1]


def find_elbow(distances: np.ndarray) -> int:
    """Index of maximum curvature (largest |second difference|) of a sorted curve."""
    if len(distances) < 3:
        return 0
    curvature = np.abs(distances[:-2] - 2 * distances[1:-1] + distances[2:])
    return int(np.argmax(curvature)) + 1


def estimate_eps(
    points: np.ndarray,
    min_pts: int,
    metric: MetricLike,
    quantile: float = 0.9,
    sample_size: int = ESTIMATION_SAMPLE_SIZE,
) -> float:
    """
    Estimate eps from the k-distance curve.

    Takes the smaller of the k-distance at the curve's elbow and the
    `quantile` k-distance.

    Raises:
        InsufficientDataError: Too few points, or every k-distance is zero
    """
    curve = k_distances(points, min_pts, metric, sample_size)
    if len(curve) == 0:
        raise InsufficientDataError(
            f"Need more than {min_pts} points to estimate eps, got {len(points)}",
            details={"n_points": len(points), "min_pts": min_pts},
        )

    elbow_value = float(curve[find_elbow(curve)])
    if elbow_value == 0.0:
        elbow_value = float(curve[int(len(curve) * 0.1)])

    ascending = curve[::-1]
    quantile_value = float(ascending[min(int(len(ascending) * quantile), len(ascending) - 1)])

    eps = min(elbow_value, quantile_value)
    if eps <= 0.0:
        raise InsufficientDataError(
            "Cannot estimate eps: k-distances are all zero (duplicate points)",
            details={"min_pts": min_pts},
        )
    return eps


# =============================================================================
# Algorithm
# =============================================================================


class DBSCANAlgorithm(BaseClusteringAlgorithm):
    """
    DBSCAN clustering implementation.

    Best for: Irregular shapes, outlier detection
    Strengths: No k required, marks noise explicitly
    Weaknesses: Sensitive to eps, struggles with varying densities
    """

    algorithm = ClusterAlgorithm.DBSCAN
    parameters_model = DBSCANParameters

    def __init__(self, config: ClusteringConfig):
        """
        Initialize DBSCAN algorithm.

        Args:
            config: Clustering configuration
        """
        super().__init__(config)

        self.eps = self.params.eps
        self.min_pts = self.params.min_pts
        self.metric = self.params.metric
        self.eps_quantile = self.params.eps_quantile

        logger.info(
            f"Initialized DBSCAN: eps={self.eps if self.eps is not None else 'auto'}, "
            f"min_pts={self.min_pts if self.min_pts is not None else 'auto'}, "
            f"metric={self.metric}"
        )

    def resolve_parameters(
        self, points: np.ndarray
    ) -> Tuple[float, int, Optional[Dict[str, Union[int, float]]]]:
        """
        eps and min_pts for a run, estimating the ones left null.

        Returns:
            (eps, min_pts, estimated) where `estimated` holds only the
            estimated values, or None when both were given
        """
        estimated: Dict[str, Union[int, float]] = {}

        min_pts = self.min_pts
        if min_pts is None:
            min_pts = estimate_min_pts(len(points), points.shape[1])
            estimated["min_pts"] = min_pts

        eps = self.eps
        if eps is None:
            eps = estimate_eps(points, min_pts, self.metric, self.eps_quantile)
            estimated["eps"] = eps

        if estimated:
            logger.info(f"Estimated DBSCAN parameters: {estimated}")
        return eps, min_pts, estimated or None

    def region_query(self, points: np.ndarray, index: int, eps: Optional[float] = None) -> np.ndarray:
        """
        Indices of the eps-neighbourhood of one point.

        Args:
            points: Point matrix (N x D)
            index: Query point
            eps: Radius (the configured eps if None)

        Returns:
            Ascending neighbour indices, excluding `index` itself
        """
        radius = self.eps if eps is None else eps
        within = distances_to(points[index], points, self.metric) <= radius
        within[index] = False
        return np.flatnonzero(within)

    def cluster(
        self,
        data: np.ndarray,
        reporter: Optional[ProgressReporter] = None,
    ) -> ClusteringResult:
        """
        Perform DBSCAN clustering.

        Args:
            data: Point matrix (N x D)
            reporter: Progress / cancellation channel

        Returns:
            ClusteringResult with clusters and noise covering every index
            once, plus the core / border split
        """
        reporter = reporter or NullReporter()
        points = self._validate_data(data)
        n_points = len(points)
        eps, min_pts, estimated = self.resolve_parameters(points)

        logger.info(f"Starting DBSCAN clustering on {n_points} points")
        start = time.perf_counter()

        visited = np.zeros(n_points, dtype=bool)
        is_noise = np.zeros(n_points, dtype=bool)
        is_core = np.zeros(n_points, dtype=bool)
        assignment = np.full(n_points, UNASSIGNED, dtype=np.int64)
        groups: List[List[int]] = []

        for index in range(n_points):
            reporter.check_cancelled()

            if not visited[index]:
                visited[index] = True
                neighbours = self.region_query(points, index, eps)

                if len(neighbours) < min_pts:
                    is_noise[index] = True
                else:
                    is_core[index] = True
                    members = self._expand_cluster(
                        points,
                        index,
                        neighbours,
                        len(groups),
                        eps,
                        min_pts,
                        visited,
                        is_noise,
                        is_core,
                        assignment,
                        reporter,
                    )
                    groups.append(members)

            processed = index + 1
            if processed % self.progress_interval == 0 or processed == n_points:
                reporter.report(
                    processed=processed,
                    total=n_points,
                    clusters_found=len(groups),
                )

        noise = tuple(int(i) for i in np.flatnonzero(is_noise))
        core_points = tuple(int(i) for i in np.flatnonzero(is_core))
        border_points = tuple(
            int(i) for i in np.flatnonzero((assignment != UNASSIGNED) & ~is_core)
        )
        clusters = self._build_clusters([sorted(g) for g in groups], points)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            f"DBSCAN found {len(clusters)} clusters, {len(core_points)} core, "
            f"{len(border_points)} border and {len(noise)} noise points"
        )

        return ClusteringResult(
            algorithm=self.algorithm,
            n_points=n_points,
            clusters=tuple(clusters),
            noise=noise,
            core_points=core_points,
            border_points=border_points,
            estimated_parameters=estimated,
            execution_time_ms=elapsed_ms,
        )

    def _expand_cluster(
        self,
        points: np.ndarray,
        seed: int,
        neighbours: np.ndarray,
        cluster_id: int,
        eps: float,
        min_pts: int,
        visited: np.ndarray,
        is_noise: np.ndarray,
        is_core: np.ndarray,
        assignment: np.ndarray,
        reporter: ProgressReporter,
    ) -> List[int]:
        """
        Grow one cluster breadth-first from a core point.

        Points are claimed when first enqueued, so an assigned point is never
        reassigned and each point enters the frontier at most once.
        """
        members = [seed]
        assignment[seed] = cluster_id
        frontier: deque = deque()

        def claim(candidates: np.ndarray) -> None:
            for candidate in candidates:
                if assignment[candidate] == UNASSIGNED:
                    assignment[candidate] = cluster_id
                    # Border promotion
                    is_noise[candidate] = False
                    members.append(int(candidate))
                    frontier.append(int(candidate))

        claim(neighbours)

        while frontier:
            reporter.check_cancelled()
            current = frontier.popleft()

            # Former noise points were already queried and are not core
            if visited[current]:
                continue
            visited[current] = True

            current_neighbours = self.region_query(points, current, eps)
            if len(current_neighbours) >= min_pts:
                is_core[current] = True
                claim(current_neighbours)

        return members

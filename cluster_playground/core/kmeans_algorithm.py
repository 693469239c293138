"""
K-Means Clustering Algorithm Implementation.

Lloyd iterations over a configurable point metric:
- Init: seed k centroids (random or kmeans++)
- Iterate: assign each point to its nearest centroid (ties go to the lowest
  centroid index), move every centroid to the mean of its members
- Stop when the summed centroid displacement drops below `tolerance`
  (Converged) or after `max_iterations` (MaxIterationsReached)

K-Means is ideal for:
- Spherical, evenly-sized clusters
- When the number of clusters is known
"""

import logging
import time
from typing import List, Optional

import numpy as np

from cluster_playground.core.base_clustering import (
    BaseClusteringAlgorithm,
    ClusteringConfig,
    NullReporter,
    ProgressReporter,
)
from cluster_playground.core.centroid_utils import centroid, seed_centroids
from cluster_playground.core.distance_metrics import pairwise_distances
from cluster_playground.schemas.data_models import (
    ClusterAlgorithm,
    ClusteringResult,
    KMeansParameters,
)

logger = logging.getLogger(__name__)


class KMeansAlgorithm(BaseClusteringAlgorithm):
    """
    K-Means clustering implementation.

    Best for: Compact blobs, quick interactive tuning of k
    Strengths: Fast, simple, always returns exactly k clusters
    Weaknesses: Requires k as input, assumes spherical clusters, sensitive to outliers
    """

    algorithm = ClusterAlgorithm.KMEANS
    parameters_model = KMeansParameters

    def __init__(self, config: ClusteringConfig):
        """
        Initialize K-Means algorithm.

        Args:
            config: Clustering configuration
        """
        super().__init__(config)

        self.k = self.params.k
        self.max_iterations = self.params.max_iterations
        self.tolerance = self.params.tolerance
        self.init_method = self.params.init_method
        self.metric = self.params.metric
        self.seed = self.params.seed

        # Per-iteration diagnostics of the last run
        self.movement_history: List[float] = []
        self.inertia_history: List[float] = []

        logger.info(
            f"Initialized K-Means: k={self.k}, max_iterations={self.max_iterations}, "
            f"init_method={self.init_method}, metric={self.metric}"
        )

    def cluster(
        self,
        data: np.ndarray,
        reporter: Optional[ProgressReporter] = None,
    ) -> ClusteringResult:
        """
        Perform K-Means clustering.

        Args:
            data: Point matrix (N x D)
            reporter: Progress / cancellation channel

        Returns:
            ClusteringResult with exactly k clusters (some possibly empty)

        Raises:
            InsufficientDataError: If data is empty
            NumericalError: If centroids become non-finite
            JobCancelledError: If the reporter signals cancellation
        """
        reporter = reporter or NullReporter()
        points = self._validate_data(data)
        n_points = len(points)

        logger.info(f"Starting K-Means clustering on {n_points} points")
        start = time.perf_counter()

        if self.k > n_points:
            logger.warning(
                f"k={self.k} exceeds {n_points} points, some clusters will be empty"
            )

        rng = np.random.default_rng(self.seed)
        centroids = seed_centroids(points, self.k, self.init_method, rng)

        self.movement_history = []
        self.inertia_history = []
        labels = np.zeros(n_points, dtype=np.int64)
        converged = False
        iterations = 0

        for iteration in range(1, self.max_iterations + 1):
            reporter.check_cancelled()

            # Assignment: argmin returns the first (lowest) index on ties
            distances = pairwise_distances(points, centroids, self.metric)
            self._ensure_finite(distances, "point-to-centroid distance")
            labels = np.argmin(distances, axis=1)

            # Update: empty clusters keep their previous centroid
            new_centroids = centroids.copy()
            for label in range(self.k):
                members = points[labels == label]
                if len(members) > 0:
                    new_centroids[label] = centroid(members)
            self._ensure_finite(new_centroids, "centroid")

            movement = float(np.sum(np.linalg.norm(new_centroids - centroids, axis=1)))
            residuals = points - new_centroids[labels]
            inertia = float(np.sum(residuals * residuals))

            centroids = new_centroids
            iterations = iteration
            self.movement_history.append(movement)
            self.inertia_history.append(inertia)

            if iteration % self.progress_interval == 0:
                reporter.report(
                    iteration=iteration,
                    max_iterations=self.max_iterations,
                    movement=movement,
                )

            if movement < self.tolerance:
                converged = True
                break

        if not converged:
            logger.warning(
                f"K-Means reached max_iterations={self.max_iterations} without converging "
                f"(last movement {self.movement_history[-1]:.6g})"
            )

        groups = [np.flatnonzero(labels == label) for label in range(self.k)]
        clusters = self._build_clusters(groups, points, centroids)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            f"K-Means created {self.k} clusters in {iterations} iterations "
            f"(converged={converged})"
        )

        return ClusteringResult(
            algorithm=self.algorithm,
            n_points=n_points,
            clusters=tuple(clusters),
            iterations=iterations,
            converged=converged,
            execution_time_ms=elapsed_ms,
        )

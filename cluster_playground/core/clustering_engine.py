"""
Clustering Engine - Orchestrates clustering operations.

Main entry point for clustering functionality.
Manages algorithm selection, parameter validation and execution.
"""

import logging
from typing import Any, Dict, List, Optional, Type

import numpy as np
from pydantic import BaseModel

from cluster_playground.core.base_clustering import (
    BaseClusteringAlgorithm,
    ClusteringConfig,
    ProgressReporter,
)
from cluster_playground.core.dbscan_algorithm import DBSCANAlgorithm
from cluster_playground.core.hierarchical_algorithm import HierarchicalAlgorithm
from cluster_playground.core.kmeans_algorithm import KMeansAlgorithm
from cluster_playground.schemas.data_models import ClusteringResult
from cluster_playground.utils.error_handling import (
    InvalidAlgorithmError,
    InvalidParameterError,
)

logger = logging.getLogger(__name__)


class ClusteringEngine:
    """
    Main clustering engine that orchestrates different algorithms.

    Provides a unified interface for all clustering operations regardless
    of the underlying algorithm.
    """

    # Registry of available algorithms
    ALGORITHMS: Dict[str, Type[BaseClusteringAlgorithm]] = {
        "kmeans": KMeansAlgorithm,
        "dbscan": DBSCANAlgorithm,
        "hierarchical": HierarchicalAlgorithm,
    }

    # Progress cadence per algorithm (iterations / points / remaining clusters)
    DEFAULT_PROGRESS_INTERVALS = {
        "kmeans": 10,
        "dbscan": 100,
        "hierarchical": 10,
    }

    def __init__(self, progress_intervals: Optional[Dict[str, int]] = None):
        """
        Initialize clustering engine.

        Args:
            progress_intervals: Per-algorithm overrides of the progress cadence
        """
        self.progress_intervals = dict(self.DEFAULT_PROGRESS_INTERVALS)
        if progress_intervals:
            self.progress_intervals.update(progress_intervals)
        logger.debug(f"Initialized ClusteringEngine with intervals {self.progress_intervals}")

    @classmethod
    def available_algorithms(cls) -> List[str]:
        return list(cls.ALGORITHMS.keys())

    @classmethod
    def resolve_algorithm(cls, algorithm: str) -> str:
        """
        Normalise an algorithm name (case-insensitive).

        Raises:
            InvalidAlgorithmError: If the algorithm is not supported
        """
        name = str(getattr(algorithm, "value", algorithm) or "").strip().lower()
        if name not in cls.ALGORITHMS:
            raise InvalidAlgorithmError(
                f"Unsupported algorithm '{algorithm}'. "
                f"Supported: {cls.available_algorithms()}",
                details={"algorithm": algorithm},
            )
        return name

    @classmethod
    def default_parameters(cls, algorithm: str) -> BaseModel:
        """Default parameter model of an algorithm."""
        return cls.ALGORITHMS[cls.resolve_algorithm(algorithm)].parameters_model()

    def create(self, algorithm: str, params: Optional[Dict[str, Any]] = None) -> BaseClusteringAlgorithm:
        """
        Instantiate an algorithm with validated parameters.

        Raises:
            InvalidAlgorithmError: Unknown algorithm
            InvalidParameterError: Parameters fail validation
        """
        name = self.resolve_algorithm(algorithm)
        config = ClusteringConfig(
            algorithm_name=name,
            params=dict(params or {}),
            progress_interval=self.progress_intervals.get(name, 10),
        )
        return self.ALGORITHMS[name](config)

    def cluster(
        self,
        data: np.ndarray,
        algorithm: str,
        algorithm_params: Optional[Dict[str, Any]] = None,
        reporter: Optional[ProgressReporter] = None,
    ) -> ClusteringResult:
        """
        Perform clustering using the specified algorithm.

        Args:
            data: Point matrix (N x D)
            algorithm: Algorithm name (kmeans/dbscan/hierarchical)
            algorithm_params: Algorithm-specific parameters
            reporter: Progress / cancellation channel

        Returns:
            ClusteringResult with clusters in dataset-index space

        Raises:
            InvalidAlgorithmError: If algorithm is not supported
            InvalidParameterError: If parameters are invalid
        """
        clusterer = self.create(algorithm, algorithm_params)

        logger.info(f"Starting {clusterer.name} clustering on {len(data)} points")

        result = clusterer.cluster(data, reporter)

        logger.info(
            f"{clusterer.name} clustering complete: {result.n_clusters} clusters, "
            f"{result.outlier_count} outliers"
        )

        return result

    def validate_clustering_config(
        self,
        algorithm: str,
        params: Optional[Dict[str, Any]],
    ) -> Dict[str, str]:
        """
        Validate clustering configuration.

        Args:
            algorithm: Algorithm name
            params: Algorithm parameters

        Returns:
            Dictionary of validation errors (empty if valid)
        """
        try:
            name = self.resolve_algorithm(algorithm)
        except InvalidAlgorithmError:
            return {"algorithm": f"Unsupported algorithm '{algorithm}'"}

        try:
            self.ALGORITHMS[name].parse_parameters(params)
        except InvalidParameterError as e:
            return dict(e.details.get("errors", {"params": e.message}))

        return {}

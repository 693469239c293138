"""
Base Clustering Algorithm Interface.

Defines the contract for all clustering algorithms in the playground engine.
Supports pluggable algorithms with a consistent API: parameters are parsed
into a frozen model once per job, progress and cancellation flow through a
ProgressReporter supplied by the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Sequence, Type

import numpy as np
from pydantic import BaseModel, ValidationError

from cluster_playground.core.centroid_utils import centroid
from cluster_playground.schemas.data_models import Cluster, ClusterAlgorithm
from cluster_playground.utils.error_handling import (
    InsufficientDataError,
    InvalidParameterError,
    NumericalError,
)

logger = logging.getLogger(__name__)


@dataclass
class ClusteringConfig:
    """Configuration for clustering algorithms."""

    algorithm_name: str
    params: Dict[str, Any] = field(default_factory=dict)
    progress_interval: int = 10


class ProgressReporter(Protocol):
    """Channel from a running algorithm back to whoever launched it."""

    def report(self, **fields: Any) -> None:
        """Emit a progress notification (algorithm-specific fields)."""
        ...

    def check_cancelled(self) -> None:
        """Raise JobCancelledError if the job has been cancelled."""
        ...


class NullReporter:
    """Reporter that drops progress and is never cancelled."""

    def report(self, **fields: Any) -> None:
        pass

    def check_cancelled(self) -> None:
        pass


def format_validation_errors(error: ValidationError) -> Dict[str, str]:
    """
    Flatten a pydantic ValidationError into a field -> message mapping.

    Args:
        error: Validation error raised by a parameter model

    Returns:
        Dictionary keyed by the dotted field location
    """
    errors: Dict[str, str] = {}
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "params"
        errors.setdefault(location, item.get("msg", "Invalid value"))
    return errors


class BaseClusteringAlgorithm(ABC):
    """
    Abstract base class for clustering algorithms.

    All clustering algorithms (K-Means, DBSCAN, Hierarchical) must inherit
    from this class, declare their parameter model and implement cluster().
    """

    algorithm: ClassVar[ClusterAlgorithm]
    parameters_model: ClassVar[Type[BaseModel]]

    def __init__(self, config: ClusteringConfig):
        """
        Initialize clustering algorithm.

        Args:
            config: Clustering configuration

        Raises:
            InvalidParameterError: If the parameters fail validation
        """
        self.config = config
        self.name = config.algorithm_name
        self.params = self.parse_parameters(config.params)
        self.progress_interval = max(1, int(config.progress_interval))

    @classmethod
    def parse_parameters(cls, params: Optional[Dict[str, Any]]) -> BaseModel:
        """
        Validate raw options into the algorithm's frozen parameter model.

        Accepts both snake_case names and the camelCase protocol aliases.
        """
        try:
            return cls.parameters_model.model_validate(params or {})
        except ValidationError as e:
            errors = format_validation_errors(e)
            summary = "; ".join(f"{k}: {v}" for k, v in errors.items())
            raise InvalidParameterError(
                f"Invalid {cls.algorithm.value} parameters: {summary}",
                details={"errors": errors},
            )

    @abstractmethod
    def cluster(
        self,
        data: np.ndarray,
        reporter: Optional[ProgressReporter] = None,
    ):
        """
        Perform clustering on points.

        Args:
            data: Point matrix (N x D)
            reporter: Progress / cancellation channel (NullReporter if None)

        Returns:
            ClusteringResult with clusters in dataset-index space
        """
        pass

    def _validate_data(self, data: Any, minimum: int = 1) -> np.ndarray:
        """
        Coerce and check the input matrix.

        Raises:
            InsufficientDataError: Fewer than `minimum` points
            InvalidParameterError: Not a finite (N x D) matrix
        """
        points = np.asarray(data, dtype=float)
        if points.size == 0:
            raise InsufficientDataError(
                f"Cannot run {self.name} on an empty dataset",
                details={"n_points": 0},
            )
        if points.ndim != 2:
            raise InvalidParameterError(
                f"Data must be an (n, d) matrix, got shape {points.shape}"
            )
        if len(points) < minimum:
            raise InsufficientDataError(
                f"{self.name} needs at least {minimum} points, got {len(points)}",
                details={"n_points": len(points), "minimum": minimum},
            )
        if not np.all(np.isfinite(points)):
            raise InvalidParameterError("Data contains non-finite coordinates")
        return points

    @staticmethod
    def _ensure_finite(values: np.ndarray, what: str) -> None:
        """Raise NumericalError when arithmetic produced NaN or inf."""
        if not np.all(np.isfinite(values)):
            raise NumericalError(f"Non-finite {what} encountered")

    @staticmethod
    def _build_clusters(
        groups: Sequence[Sequence[int]],
        data: np.ndarray,
        centroids: Optional[np.ndarray] = None,
    ) -> List[Cluster]:
        """
        Turn index groups into Cluster models.

        When `centroids` is None each centroid is derived from its members
        (empty groups get none).
        """
        clusters = []
        for label, members in enumerate(groups):
            indices = tuple(int(i) for i in members)
            if centroids is not None:
                center = tuple(float(v) for v in centroids[label])
            elif indices:
                center = tuple(float(v) for v in centroid(data[list(indices)]))
            else:
                center = None
            clusters.append(Cluster(indices=indices, centroid=center))
        return clusters

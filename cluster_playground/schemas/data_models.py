"""
data_models.py

Pydantic data models for the cluster playground engine.
Defines algorithm parameters, clustering results, the executor message
protocol and quality reports.

Schema Design:
- Parameters: frozen value objects, snapshotted per job
- Results: immutable, reference points by dataset index only
- Messages: JSON-safe dictionaries crossing the executor boundary,
  discriminated by their "type" field
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from enum import Enum

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# =============================================================================
# ENUMS
# =============================================================================


class ClusterAlgorithm(str, Enum):
    """Supported clustering algorithms."""

    KMEANS = "kmeans"
    DBSCAN = "dbscan"
    HIERARCHICAL = "hierarchical"


class DistanceMetric(str, Enum):
    """Point-to-point distance functions."""

    EUCLIDEAN = "euclidean"
    MANHATTAN = "manhattan"
    COSINE = "cosine"


class InitMethod(str, Enum):
    """K-Means centroid seeding strategies."""

    RANDOM = "random"
    KMEANS_PLUS_PLUS = "kmeans++"


class LinkageMethod(str, Enum):
    """Agglomerative linkage criteria."""

    SINGLE = "single"
    COMPLETE = "complete"
    AVERAGE = "average"
    WARD = "ward"


class JobStatus(str, Enum):
    """Outcome states of a playground job."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    BUSY = "busy"
    RESTORED = "restored"


class CoordinatorState(str, Enum):
    """Coordinator lifecycle states (single-flight)."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    RUNNING = "running"


# =============================================================================
# ALGORITHM PARAMETERS
# =============================================================================


_PARAMETER_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    populate_by_name=True,
    use_enum_values=True,
    validate_default=True,
)


class KMeansParameters(BaseModel):
    """K-Means options. camelCase aliases match the playground protocol."""

    model_config = _PARAMETER_CONFIG

    k: int = Field(default=3, gt=0, description="Number of clusters")
    max_iterations: int = Field(default=100, gt=0, alias="maxIterations", description="Iteration cap")
    tolerance: float = Field(default=1e-4, ge=0.0, description="Total centroid displacement threshold")
    init_method: InitMethod = Field(default=InitMethod.KMEANS_PLUS_PLUS, alias="initMethod", description="Seeding strategy")
    metric: DistanceMetric = Field(default=DistanceMetric.EUCLIDEAN, description="Assignment distance")
    seed: Optional[int] = Field(default=None, description="Random seed (None = nondeterministic)")


class DBSCANParameters(BaseModel):
    """DBSCAN options. A null eps or minPts is estimated from the data."""

    model_config = _PARAMETER_CONFIG

    eps: Optional[float] = Field(default=0.5, gt=0.0, description="Neighbourhood radius (null = k-distance estimate)")
    min_pts: Optional[int] = Field(
        default=5,
        gt=0,
        alias="minPts",
        description="Neighbours required for a core point (null = estimated from n and dimension)",
    )
    metric: DistanceMetric = Field(default=DistanceMetric.EUCLIDEAN, description="Neighbourhood distance")
    eps_quantile: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        alias="epsQuantile",
        description="k-distance quantile bounding the estimated eps",
    )


class HierarchicalParameters(BaseModel):
    """Agglomerative clustering options."""

    model_config = _PARAMETER_CONFIG

    num_clusters: Optional[int] = Field(
        default=None,
        gt=0,
        alias="numClusters",
        description="Target cluster count (null = ceil(sqrt(n / 2)))",
    )
    linkage: LinkageMethod = Field(default=LinkageMethod.WARD, description="Linkage criterion")
    metric: DistanceMetric = Field(default=DistanceMetric.EUCLIDEAN, description="Point distance for linkage")


AlgorithmParameters = Union[KMeansParameters, DBSCANParameters, HierarchicalParameters]


# =============================================================================
# CLUSTER MODELS
# =============================================================================


class Cluster(BaseModel):
    """A set of dataset indices with an optional centroid."""

    model_config = ConfigDict(frozen=True)

    indices: Tuple[int, ...] = Field(default=(), description="Dataset indices of the members")
    centroid: Optional[Tuple[float, ...]] = Field(None, description="Mean position of the members")

    @property
    def size(self) -> int:
        return len(self.indices)


class DendrogramMerge(BaseModel):
    """One agglomerative merge step."""

    model_config = ConfigDict(frozen=True)

    cluster1: int = Field(..., description="Id of the first merged cluster")
    cluster2: int = Field(..., description="Id of the second merged cluster")
    distance: float = Field(..., description="Linkage distance at the merge")
    merged_id: int = Field(..., description="Id assigned to the merged cluster")
    size: int = Field(..., ge=2, description="Points in the merged cluster")


class ClusteringResult(BaseModel):
    """Results of a clustering run. Immutable once produced."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    algorithm: ClusterAlgorithm
    n_points: int = Field(..., ge=0)
    clusters: Tuple[Cluster, ...] = ()
    noise: Tuple[int, ...] = Field(default=(), description="Unclustered indices (DBSCAN)")
    core_points: Optional[Tuple[int, ...]] = Field(None, description="Core point indices (DBSCAN)")
    border_points: Optional[Tuple[int, ...]] = Field(None, description="Clustered non-core indices (DBSCAN)")
    estimated_parameters: Optional[Dict[str, Union[int, float]]] = Field(
        None, description="Parameters estimated from the data for this run"
    )
    iterations: Optional[int] = None
    converged: Optional[bool] = None
    dendrogram: Optional[Tuple[DendrogramMerge, ...]] = None
    execution_time_ms: float = 0.0

    @property
    def n_clusters(self) -> int:
        return len(self.clusters)

    @property
    def outlier_count(self) -> int:
        return len(self.noise)

    @property
    def labels(self) -> np.ndarray:
        """Per-point cluster label, -1 for noise or unassigned points."""
        labels = np.full(self.n_points, -1, dtype=np.int64)
        for label, cluster in enumerate(self.clusters):
            labels[list(cluster.indices)] = label
        return labels

    @property
    def centroids(self) -> Optional[np.ndarray]:
        """Centroid matrix when every cluster carries one."""
        if not self.clusters or any(c.centroid is None for c in self.clusters):
            return None
        return np.array([c.centroid for c in self.clusters], dtype=float)

    def to_dict(self) -> Dict[str, Any]:
        """Summary for logs and CLI output."""
        return {
            "algorithm": self.algorithm,
            "n_clusters": self.n_clusters,
            "cluster_sizes": [c.size for c in self.clusters],
            "outlier_count": self.outlier_count,
            "iterations": self.iterations,
            "converged": self.converged,
            "execution_time_ms": round(self.execution_time_ms, 3),
            "total_items": self.n_points,
            "estimated_parameters": self.estimated_parameters,
        }


# =============================================================================
# EXECUTOR PROTOCOL
# =============================================================================


class ClusterRequest(BaseModel):
    """Request to run one clustering job."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["cluster"] = "cluster"
    job_id: str = Field(..., min_length=1, alias="jobId")
    algorithm: str = Field(..., description="Algorithm name (validated by the engine)")
    data: List[List[float]] = Field(..., description="Points, one coordinate list per point")
    options: Dict[str, Any] = Field(default_factory=dict, description="Algorithm parameters")


class CancelRequest(BaseModel):
    """Request to cancel a job."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: Literal["cancel"] = "cancel"
    job_id: str = Field(..., min_length=1, alias="jobId")


ExecutorRequest = Annotated[Union[ClusterRequest, CancelRequest], Field(discriminator="type")]


class StartedMessage(BaseModel):
    """Emitted once when the executor begins a job."""

    type: Literal["started"] = "started"
    job_id: str
    algorithm: str
    n_points: int


class ProgressMessage(BaseModel):
    """Progress of a running job. Fields depend on the algorithm."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["progress"] = "progress"
    job_id: str
    algorithm: str
    phase: Optional[str] = None
    # kmeans
    iteration: Optional[int] = None
    max_iterations: Optional[int] = None
    movement: Optional[float] = None
    # dbscan
    processed: Optional[int] = None
    total: Optional[int] = None
    clusters_found: Optional[int] = None
    # hierarchical
    clusters_remaining: Optional[int] = None
    target_clusters: Optional[int] = None
    merges: Optional[int] = None

    @property
    def fraction(self) -> Optional[float]:
        """Completion estimate in [0, 1], when the fields allow one."""
        if self.iteration is not None and self.max_iterations:
            return min(1.0, self.iteration / self.max_iterations)
        if self.processed is not None and self.total:
            return min(1.0, self.processed / self.total)
        if self.merges is not None and self.clusters_remaining is not None and self.target_clusters is not None:
            needed = self.merges + self.clusters_remaining - self.target_clusters
            return min(1.0, self.merges / needed) if needed > 0 else 1.0
        return None


class CompleteMessage(BaseModel):
    """Terminal success."""

    type: Literal["complete"] = "complete"
    job_id: str
    algorithm: str
    result: ClusteringResult


class ErrorPayload(BaseModel):
    """Error details carried by an error message."""

    message: str
    kind: str = Field(..., description="input or execution")
    error_code: Optional[str] = None


class ErrorMessage(BaseModel):
    """Terminal failure."""

    type: Literal["error"] = "error"
    job_id: Optional[str] = None
    algorithm: Optional[str] = None
    error: ErrorPayload


class CancelledMessage(BaseModel):
    """Acknowledgement that a job was cancelled. Replaces complete/error."""

    type: Literal["cancelled"] = "cancelled"
    job_id: str


ExecutorMessage = Annotated[
    Union[StartedMessage, ProgressMessage, CompleteMessage, ErrorMessage, CancelledMessage],
    Field(discriminator="type"),
]

TERMINAL_MESSAGE_TYPES = frozenset({"complete", "error", "cancelled"})

_request_adapter: TypeAdapter = TypeAdapter(ExecutorRequest)
_message_adapter: TypeAdapter = TypeAdapter(ExecutorMessage)


def parse_request(payload: Dict[str, Any]) -> Union[ClusterRequest, CancelRequest]:
    """Validate a raw request dictionary."""
    return _request_adapter.validate_python(payload)


def parse_message(payload: Dict[str, Any]):
    """Validate a raw executor reply dictionary."""
    return _message_adapter.validate_python(payload)


# =============================================================================
# QUALITY REPORTS
# =============================================================================


class InternalMetrics(BaseModel):
    """Label-free quality metrics."""

    silhouette_score: Optional[float] = Field(None, description="[-1, 1], higher is better")
    davies_bouldin_index: Optional[float] = Field(None, description=">= 0, lower is better")
    calinski_harabasz_index: Optional[float] = Field(None, description=">= 0, higher is better")
    within_cluster_ss: float = 0.0
    between_cluster_ss: float = 0.0
    n_clusters: int = 0
    noise_ratio: float = 0.0


class ExternalMetrics(BaseModel):
    """Agreement with ground-truth labels."""

    adjusted_rand_index: float
    normalized_mutual_info: float
    homogeneity: float
    completeness: float
    v_measure: float


class QualitySummary(BaseModel):
    """Normalised scores in [0, 1] and a verbal rating."""

    overall_score: float
    internal_score: float
    external_score: Optional[float] = None
    recommendation: str


class QualityReport(BaseModel):
    """Quality assessment attached to a history entry."""

    model_config = ConfigDict(frozen=True)

    internal: InternalMetrics
    external: Optional[ExternalMetrics] = None
    summary: QualitySummary

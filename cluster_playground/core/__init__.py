"""
Core clustering module for the playground engine.

Exports:
- ClusteringEngine: Algorithm registry and entry point
- BaseClusteringAlgorithm: Base class for algorithms
- ClusteringConfig: Configuration container
- Dataset: Immutable point matrix
- QualityAssessor: Post-hoc quality evaluation
- Individual algorithm implementations
"""

from cluster_playground.core.base_clustering import (
    BaseClusteringAlgorithm,
    ClusteringConfig,
    NullReporter,
    ProgressReporter,
)
from cluster_playground.core.clustering_engine import ClusteringEngine
from cluster_playground.core.dataset import Dataset
from cluster_playground.core.dbscan_algorithm import DBSCANAlgorithm
from cluster_playground.core.hierarchical_algorithm import HierarchicalAlgorithm, cut_dendrogram
from cluster_playground.core.kmeans_algorithm import KMeansAlgorithm
from cluster_playground.core.quality_metrics import QualityAssessor

__all__ = [
    "ClusteringEngine",
    "BaseClusteringAlgorithm",
    "ClusteringConfig",
    "NullReporter",
    "ProgressReporter",
    "Dataset",
    "QualityAssessor",
    "KMeansAlgorithm",
    "DBSCANAlgorithm",
    "HierarchicalAlgorithm",
    "cut_dendrogram",
]

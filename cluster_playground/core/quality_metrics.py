"""
Clustering quality assessment.

Internal metrics (no labels needed) come from scikit-learn plus sums of
squares computed here; external metrics compare against ground-truth labels
when the dataset carries them. Noise points (members of no cluster) are
excluded from internal metrics and kept as their own label for external
ones.

The summary normalises everything into [0, 1]:
- silhouette (s + 1) / 2, Davies-Bouldin 1 / (1 + db), Calinski-Harabasz
  min(1, ch / 100), averaged into internal_score
- max(0, ARI), NMI, homogeneity, completeness and V-measure averaged into
  external_score
- overall_score is the mean of the available scores
"""

import logging
from typing import Any, List, Optional, Sequence, Union

import numpy as np
from sklearn.metrics import (
    adjusted_rand_score,
    calinski_harabasz_score,
    davies_bouldin_score,
    homogeneity_completeness_v_measure,
    normalized_mutual_info_score,
    silhouette_score,
)

from cluster_playground.schemas.data_models import (
    Cluster,
    ExternalMetrics,
    InternalMetrics,
    QualityReport,
    QualitySummary,
)

logger = logging.getLogger(__name__)

ClusterLike = Union[Cluster, Sequence[int]]

# Lower bounds of each rating, checked in order
RECOMMENDATION_BANDS = (
    (0.8, "excellent"),
    (0.7, "good"),
    (0.6, "fair"),
    (0.5, "poor"),
)

# Internal score when fewer than two clusters make the metrics undefined
NEUTRAL_INTERNAL_SCORE = 0.5


def recommendation_for(score: float) -> str:
    """Verbal rating of an overall score."""
    for threshold, label in RECOMMENDATION_BANDS:
        if score >= threshold:
            return label
    return "very_poor"


def _member_indices(cluster: ClusterLike) -> List[int]:
    if isinstance(cluster, Cluster):
        return list(cluster.indices)
    return [int(i) for i in cluster]


class QualityAssessor:
    """Evaluates a clustering against its data and optional ground truth."""

    def evaluate(
        self,
        data: Any,
        clusters: Sequence[ClusterLike],
        ground_truth_labels: Optional[Sequence[Any]] = None,
    ) -> QualityReport:
        """
        Evaluate clustering quality.

        Args:
            data: Point matrix (N x D)
            clusters: Clusters (or index sequences) in dataset-index space
            ground_truth_labels: Optional true label per point

        Returns:
            QualityReport with internal, optional external and summary scores
        """
        points = np.asarray(data, dtype=float)
        n_points = len(points)

        labels = np.full(n_points, -1, dtype=np.int64)
        for label, cluster in enumerate(clusters):
            labels[_member_indices(cluster)] = label

        internal = self._internal_metrics(points, labels)
        external = None
        if ground_truth_labels is not None:
            external = self._external_metrics(labels, ground_truth_labels)

        summary = self._summarize(internal, external)
        logger.debug(
            f"Quality assessed: overall={summary.overall_score:.3f} "
            f"({summary.recommendation}), clusters={internal.n_clusters}"
        )
        return QualityReport(internal=internal, external=external, summary=summary)

    def _internal_metrics(self, points: np.ndarray, labels: np.ndarray) -> InternalMetrics:
        n_points = len(points)
        clustered = labels != -1
        noise_ratio = float(np.sum(~clustered) / n_points) if n_points else 0.0

        x = points[clustered]
        y = labels[clustered]
        unique = np.unique(y)

        within = 0.0
        between = 0.0
        if len(x) > 0:
            overall = x.mean(axis=0)
            for label in unique:
                members = x[y == label]
                center = members.mean(axis=0)
                within += float(np.sum((members - center) ** 2))
                between += float(len(members) * np.sum((center - overall) ** 2))

        metrics = InternalMetrics(
            within_cluster_ss=within,
            between_cluster_ss=between,
            n_clusters=int(len(unique)),
            noise_ratio=noise_ratio,
        )

        # sklearn needs 2 <= n_labels <= n_samples - 1
        if not 2 <= len(unique) <= len(x) - 1:
            return metrics

        return metrics.model_copy(
            update={
                "silhouette_score": float(silhouette_score(x, y)),
                "davies_bouldin_index": float(davies_bouldin_score(x, y)),
                "calinski_harabasz_index": float(calinski_harabasz_score(x, y)),
            }
        )

    def _external_metrics(
        self,
        labels: np.ndarray,
        ground_truth_labels: Sequence[Any],
    ) -> ExternalMetrics:
        truth = [str(label) for label in ground_truth_labels]
        homogeneity, completeness, v_measure = homogeneity_completeness_v_measure(truth, labels)
        return ExternalMetrics(
            adjusted_rand_index=float(adjusted_rand_score(truth, labels)),
            normalized_mutual_info=float(normalized_mutual_info_score(truth, labels)),
            homogeneity=float(homogeneity),
            completeness=float(completeness),
            v_measure=float(v_measure),
        )

    def _summarize(
        self,
        internal: InternalMetrics,
        external: Optional[ExternalMetrics],
    ) -> QualitySummary:
        if internal.silhouette_score is None:
            internal_score = NEUTRAL_INTERNAL_SCORE
        else:
            components = [(internal.silhouette_score + 1.0) / 2.0]
            if internal.davies_bouldin_index and internal.davies_bouldin_index > 0:
                components.append(1.0 / (1.0 + internal.davies_bouldin_index))
            if internal.calinski_harabasz_index and internal.calinski_harabasz_index > 0:
                components.append(min(1.0, internal.calinski_harabasz_index / 100.0))
            internal_score = float(np.mean(components))

        external_score = None
        scores = [internal_score]
        if external is not None:
            external_score = float(
                np.mean(
                    [
                        max(0.0, external.adjusted_rand_index),
                        external.normalized_mutual_info,
                        external.homogeneity,
                        external.completeness,
                        external.v_measure,
                    ]
                )
            )
            scores.append(external_score)

        overall = float(np.mean(scores))
        return QualitySummary(
            overall_score=overall,
            internal_score=internal_score,
            external_score=external_score,
            recommendation=recommendation_for(overall),
        )

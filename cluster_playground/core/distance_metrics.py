"""
Distance metrics over n-dimensional points.

All functions work on plain coordinate arrays; points are never special-cased
by shape or container type. Results are non-negative and symmetric.

- euclidean: L2 norm of the difference
- manhattan: L1 norm of the difference
- cosine:    1 - cosine similarity, 0 when either vector has zero magnitude
"""

from typing import Any, Union

import numpy as np

from cluster_playground.schemas.data_models import DistanceMetric
from cluster_playground.utils.error_handling import InvalidParameterError


MetricLike = Union[str, DistanceMetric]


def resolve_metric(metric: MetricLike) -> DistanceMetric:
    """
    Normalise a metric name.

    Raises:
        InvalidParameterError: If the metric is not supported
    """
    try:
        return DistanceMetric(str(getattr(metric, "value", metric)).lower())
    except ValueError:
        raise InvalidParameterError(
            f"Unsupported metric '{metric}'. "
            f"Supported: {[m.value for m in DistanceMetric]}"
        )


def pairwise_distances(
    points_a: Any,
    points_b: Any,
    metric: MetricLike = DistanceMetric.EUCLIDEAN,
) -> np.ndarray:
    """
    Distance between every row of points_a and every row of points_b.

    Args:
        points_a: (m, d) coordinates
        points_b: (n, d) coordinates
        metric: Distance metric

    Returns:
        (m, n) distance matrix
    """
    metric = resolve_metric(metric)
    a = np.atleast_2d(np.asarray(points_a, dtype=float))
    b = np.atleast_2d(np.asarray(points_b, dtype=float))

    if metric == DistanceMetric.EUCLIDEAN:
        diff = a[:, None, :] - b[None, :, :]
        return np.sqrt(np.sum(diff * diff, axis=-1))

    if metric == DistanceMetric.MANHATTAN:
        return np.sum(np.abs(a[:, None, :] - b[None, :, :]), axis=-1)

    # cosine
    dots = np.sum(a[:, None, :] * b[None, :, :], axis=-1)
    norms = np.sqrt(np.sum(a * a, axis=1))[:, None] * np.sqrt(np.sum(b * b, axis=1))[None, :]
    similarity = np.divide(dots, norms, out=np.ones_like(dots), where=norms > 0)
    return np.maximum(0.0, 1.0 - similarity)


def distances_to(
    point: Any,
    points: Any,
    metric: MetricLike = DistanceMetric.EUCLIDEAN,
) -> np.ndarray:
    """
    Distance from one point to each row of points.

    Returns:
        (n,) distance vector
    """
    return pairwise_distances(np.atleast_2d(point), points, metric)[0]


def distance(a: Any, b: Any, metric: MetricLike = DistanceMetric.EUCLIDEAN) -> float:
    """Distance between two points."""
    return float(pairwise_distances(a, b, metric)[0, 0])


def squared_euclidean_to(point: Any, points: Any) -> np.ndarray:
    """Squared L2 distance from one point to each row (ward / k-means++)."""
    diff = np.atleast_2d(np.asarray(points, dtype=float)) - np.asarray(point, dtype=float)
    return np.sum(diff * diff, axis=1)

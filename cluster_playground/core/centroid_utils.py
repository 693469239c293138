"""
Centroid utilities: mean points and K-Means seeding.
"""

import logging
from typing import Any, Optional

import numpy as np

from cluster_playground.core.distance_metrics import squared_euclidean_to
from cluster_playground.schemas.data_models import InitMethod
from cluster_playground.utils.error_handling import InvalidParameterError

logger = logging.getLogger(__name__)


def centroid(points: Any, dimension: Optional[int] = None) -> np.ndarray:
    """
    Mean point of a set of points.

    Never fails on empty input: returns the origin (of `dimension`, or 2-D
    when the dimension cannot be inferred). Callers guard empty clusters.

    Args:
        points: (n, d) coordinates
        dimension: Dimension to use for the empty-input origin

    Returns:
        (d,) mean vector
    """
    points = np.asarray(points, dtype=float)
    if points.size == 0:
        if dimension is None:
            dimension = points.shape[1] if points.ndim == 2 and points.shape[1] > 0 else 2
        return np.zeros(dimension)
    return np.atleast_2d(points).mean(axis=0)


def select_seed_indices(
    data: np.ndarray,
    k: int,
    method: str = InitMethod.KMEANS_PLUS_PLUS,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Choose the dataset indices used as initial centroids.

    random:   k indices uniformly, without replacement when k <= n
    kmeans++: first index uniformly, then each next index with probability
              proportional to the squared distance to the nearest chosen
              seed. An index is never chosen twice while unchosen indices
              remain; once all remaining mass is zero (duplicate points) the
              next seed is drawn uniformly from the unchosen indices.

    Args:
        data: (n, d) points
        k: Number of seeds
        method: "random" or "kmeans++"
        rng: Random generator (a fresh unseeded one if None)

    Returns:
        (k,) integer index array
    """
    n = len(data)
    if n == 0:
        raise InvalidParameterError("Cannot seed centroids from an empty dataset")
    if k <= 0:
        raise InvalidParameterError(f"k must be positive, got {k}")

    rng = rng if rng is not None else np.random.default_rng()

    if method == InitMethod.RANDOM:
        return rng.choice(n, size=k, replace=k > n)

    if method != InitMethod.KMEANS_PLUS_PLUS:
        raise InvalidParameterError(f"Unsupported init method '{method}'")

    chosen = [int(rng.integers(n))]
    closest = squared_euclidean_to(data[chosen[0]], data)

    while len(chosen) < k:
        weights = closest.copy()
        weights[chosen] = 0.0
        total = float(weights.sum())

        if total > 0 and np.isfinite(total):
            index = int(rng.choice(n, p=weights / total))
        else:
            remaining = np.setdiff1d(np.arange(n), chosen)
            if len(remaining) == 0:
                # k > n: repeats are unavoidable
                index = int(rng.integers(n))
            else:
                index = int(rng.choice(remaining))

        chosen.append(index)
        closest = np.minimum(closest, squared_euclidean_to(data[index], data))

    return np.asarray(chosen, dtype=np.int64)


def seed_centroids(
    data: np.ndarray,
    k: int,
    method: str = InitMethod.KMEANS_PLUS_PLUS,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Initial centroids for K-Means.

    Returns:
        (k, d) centroid matrix (a copy of the seed points)
    """
    indices = select_seed_indices(data, k, method, rng)
    logger.debug(f"Seeded {k} centroids with {method}: indices={indices.tolist()}")
    return np.array(data[indices], dtype=float, copy=True)

"""
Dataset snapshot.

A read-only (n, d) float matrix plus optional ground-truth labels. Clusters
reference points by their index in this matrix, so a Dataset is never
mutated once built: edits produce a new Dataset.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from cluster_playground.utils.error_handling import InvalidParameterError

logger = logging.getLogger(__name__)

# Fields checked, in order, for ground-truth labels on record input
LABEL_FIELDS = ("label", "class", "species", "category")

# Coordinate keys accepted on mapping records, in axis order
COORDINATE_FIELDS = ("x", "y", "z")


class Dataset:
    """Immutable point matrix with optional ground-truth labels."""

    def __init__(
        self,
        points: Any,
        labels: Optional[Sequence[Any]] = None,
    ):
        """
        Build a dataset snapshot.

        Args:
            points: Array-like of shape (n, d); copied and frozen
            labels: Optional ground-truth label per point

        Raises:
            InvalidParameterError: If points are not a numeric 2-D matrix or
                labels do not match the point count
        """
        try:
            matrix = np.array(points, dtype=float, copy=True)
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"Points must be numeric coordinates: {e}")

        if matrix.size == 0:
            matrix = matrix.reshape(0, matrix.shape[1] if matrix.ndim == 2 else 2)

        if matrix.ndim != 2:
            raise InvalidParameterError(
                f"Points must form an (n, d) matrix, got shape {matrix.shape}"
            )

        if not np.all(np.isfinite(matrix)):
            raise InvalidParameterError("Points contain non-finite coordinates")

        if labels is not None and len(labels) != len(matrix):
            raise InvalidParameterError(
                f"Got {len(labels)} labels for {len(matrix)} points"
            )

        matrix.setflags(write=False)
        self._points = matrix
        self._labels: Optional[Tuple[Any, ...]] = tuple(labels) if labels is not None else None

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> "Dataset":
        """
        Normalise point records into one coordinate representation.

        Accepts mappings with x/y(/z) keys and plain coordinate sequences.
        Ground-truth labels come from the first of LABEL_FIELDS found on the
        first mapping record.

        Args:
            records: Iterable of mappings or sequences

        Returns:
            Dataset snapshot
        """
        records = list(records)
        if not records:
            return cls(np.empty((0, 2)))

        label_field = None
        first = records[0]
        if isinstance(first, Mapping):
            label_field = next((f for f in LABEL_FIELDS if f in first), None)

        rows: List[List[float]] = []
        labels: List[Any] = []
        for i, record in enumerate(records):
            if isinstance(record, Mapping):
                axes = [f for f in COORDINATE_FIELDS if f in record]
                if not axes:
                    raise InvalidParameterError(f"Record {i} has no x/y coordinates")
                rows.append([record[f] for f in axes])
                if label_field is not None:
                    labels.append(record.get(label_field))
            else:
                rows.append(list(record))

        if label_field is not None:
            logger.debug(f"Using '{label_field}' as ground-truth label field")

        return cls(rows, labels if label_field is not None else None)

    @property
    def points(self) -> np.ndarray:
        """Read-only (n, d) matrix."""
        return self._points

    @property
    def labels(self) -> Optional[Tuple[Any, ...]]:
        """Ground-truth labels, if the dataset carries them."""
        return self._labels

    @property
    def dimension(self) -> int:
        return int(self._points.shape[1])

    def to_list(self) -> List[List[float]]:
        """Copy of the coordinates as plain lists (message payload)."""
        return self._points.tolist()

    def __len__(self) -> int:
        return int(self._points.shape[0])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dataset):
            return NotImplemented
        return (
            self._points.shape == other._points.shape
            and bool(np.array_equal(self._points, other._points))
            and self._labels == other._labels
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"Dataset(n={len(self)}, dimension={self.dimension}, "
            f"labelled={self._labels is not None})"
        )

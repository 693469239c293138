"""
Pytest configuration and shared fixtures for cluster playground tests.

This module provides:
- Small point sets with known cluster structure
- Recording / cancelling progress reporters
- Test settings (short debounce window, thread transport)
- A scripted fake executor for coordinator tests
"""

import os
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from cluster_playground.config.settings_loader import ConfigManager, Settings
from cluster_playground.utils.error_handling import JobCancelledError

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["LOG_LEVEL"] = "DEBUG"


# =============================================================================
# Test Data
# =============================================================================

@pytest.fixture
def two_blobs():
    """Six points forming two obvious blobs around (0, 0) and (10, 10)."""
    return np.array(
        [[0, 0], [1, 0], [0, 1], [10, 10], [11, 10], [10, 11]],
        dtype=float,
    )


@pytest.fixture
def collinear_points():
    """Four points at x = 0, 1, 2, 3 on the x axis."""
    return np.array([[0, 0], [1, 0], [2, 0], [3, 0]], dtype=float)


@pytest.fixture
def labelled_blobs():
    """
    Three well separated gaussian blobs with ground-truth labels.

    30 points per blob around (0, 0), (8, 0) and (4, 7).
    """
    rng = np.random.default_rng(42)
    centers = np.array([[0.0, 0.0], [8.0, 0.0], [4.0, 7.0]])
    points = np.vstack([c + rng.normal(scale=0.5, size=(30, 2)) for c in centers])
    labels = [name for name in ("a", "b", "c") for _ in range(30)]
    return points, labels


@pytest.fixture
def random_points():
    """Factory for reproducible random point sets."""

    def make(n: int = 40, dim: int = 2, seed: int = 0) -> np.ndarray:
        return np.random.default_rng(seed).uniform(-10, 10, size=(n, dim))

    return make


# =============================================================================
# Reporters
# =============================================================================

class RecordingReporter:
    """ProgressReporter that records reports and can cancel after N checks."""

    def __init__(self, cancel_after: Optional[int] = None):
        self.reports: List[Dict[str, Any]] = []
        self.checks = 0
        self.cancel_after = cancel_after

    def report(self, **fields: Any) -> None:
        self.check_cancelled()
        self.reports.append(fields)

    def check_cancelled(self) -> None:
        self.checks += 1
        if self.cancel_after is not None and self.checks > self.cancel_after:
            raise JobCancelledError("cancelled by test")


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def cancelling_reporter():
    """Factory: reporter that cancels after the given number of checks."""
    return RecordingReporter


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config():
    """Never leak cached settings between tests."""
    ConfigManager.reset()
    yield
    ConfigManager.reset()


@pytest.fixture
def test_settings():
    """Settings tuned for fast tests."""
    return Settings(
        executor={"transport": "thread", "cancel_poll_interval_ms": 0, "log_resource_usage": False},
        coordinator={"debounce_seconds": 0.05, "history_capacity": 10},
        logging={"level": "DEBUG", "format": "console"},
    )


# =============================================================================
# Fake Executor
# =============================================================================

class FakeExecutor:
    """
    Records requests instead of running them.

    Tests drive the coordinator by feeding reply dictionaries to
    Coordinator.handle_message.
    """

    def __init__(self):
        self.submitted: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.listener = None

    def set_listener(self, callback):
        self.listener = callback

    def submit(self, job_id, algorithm, data, options=None):
        self.submitted.append(
            {"job_id": job_id, "algorithm": algorithm, "data": data, "options": dict(options or {})}
        )

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        return True

    @property
    def last_job_id(self) -> str:
        return self.submitted[-1]["job_id"]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


def complete_message(job_id: str, algorithm: str, groups: List[List[int]], n_points: int) -> Dict[str, Any]:
    """Build a `complete` reply for the given index groups."""
    return {
        "type": "complete",
        "job_id": job_id,
        "algorithm": algorithm,
        "result": {
            "algorithm": algorithm,
            "n_points": n_points,
            "clusters": [{"indices": g, "centroid": None} for g in groups],
            "noise": [],
            "execution_time_ms": 1.0,
        },
    }


@pytest.fixture
def make_complete():
    """Factory for `complete` replies."""
    return complete_message

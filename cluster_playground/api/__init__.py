"""
Job execution layer: background executor and playground coordinator.
"""

from cluster_playground.api.coordinator import (
    Coordinator,
    HistoryEntry,
    Job,
    JobOutcome,
    PlaygroundState,
)
from cluster_playground.api.executor import (
    BaseExecutor,
    ProcessExecutor,
    ThreadExecutor,
    create_executor,
)

__all__ = [
    "Coordinator",
    "HistoryEntry",
    "Job",
    "JobOutcome",
    "PlaygroundState",
    "BaseExecutor",
    "ProcessExecutor",
    "ThreadExecutor",
    "create_executor",
]

"""
Playground coordinator.

Owns the current dataset, algorithm, parameters and result, the bounded
undo/redo history and the job lifecycle:

    IDLE --submit()--> SUBMITTING --request sent--> RUNNING
    RUNNING --complete / error / cancelled / cancel()--> IDLE

Only one job runs at a time; submit() outside IDLE raises
CoordinatorBusyError. Executor replies are handed to the event loop with
call_soon_threadsafe and filtered by job id, so replies of a superseded or
cancelled job never touch the state.

All observable state lives in one frozen PlaygroundState that is replaced
as a whole on every change; listeners receive each new snapshot.
"""

import asyncio
import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog
from pydantic import ValidationError

from cluster_playground.api.executor import BaseExecutor
from cluster_playground.config.settings_loader import Settings, get_settings
from cluster_playground.core.base_clustering import format_validation_errors
from cluster_playground.core.clustering_engine import ClusteringEngine
from cluster_playground.core.dataset import Dataset
from cluster_playground.core.quality_metrics import QualityAssessor
from cluster_playground.schemas.data_models import (
    AlgorithmParameters,
    CancelledMessage,
    ClusteringResult,
    CompleteMessage,
    CoordinatorState,
    ErrorMessage,
    ErrorPayload,
    JobStatus,
    ProgressMessage,
    QualityReport,
    StartedMessage,
    parse_message,
)
from cluster_playground.utils.debounce import Debouncer
from cluster_playground.utils.error_handling import (
    ClusteringServiceError,
    CoordinatorBusyError,
    InsufficientDataError,
    InvalidParameterError,
    JobNotFoundError,
    JobStateError,
    handle_exceptions,
)
from cluster_playground.utils.history import HistoryStack

logger = structlog.get_logger(__name__)

StateListener = Callable[["PlaygroundState"], None]

# Allowed lifecycle transitions
_TRANSITIONS = {
    CoordinatorState.IDLE: {CoordinatorState.SUBMITTING},
    CoordinatorState.SUBMITTING: {CoordinatorState.RUNNING, CoordinatorState.IDLE},
    CoordinatorState.RUNNING: {CoordinatorState.IDLE},
}


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class Job:
    """One submitted job: everything it needs, snapshotted."""

    job_id: str
    algorithm: str
    parameters: AlgorithmParameters
    dataset: Dataset


@dataclass(frozen=True)
class JobOutcome:
    """Terminal outcome of a job as seen by run()."""

    job_id: str
    status: JobStatus
    result: Optional[ClusteringResult] = None
    quality: Optional[QualityReport] = None
    error: Optional[ErrorPayload] = None


@dataclass(frozen=True)
class HistoryEntry:
    """State restored by undo/redo."""

    dataset: Dataset
    algorithm: str
    parameters: AlgorithmParameters
    result: ClusteringResult
    quality: Optional[QualityReport]
    job_id: str
    timestamp: float = field(default_factory=time.time)

    @property
    def clusters(self):
        return self.result.clusters


@dataclass(frozen=True)
class PlaygroundState:
    """Everything an observer may read, replaced atomically."""

    dataset: Optional[Dataset] = None
    algorithm: str = "kmeans"
    parameters: Mapping[str, AlgorithmParameters] = field(default_factory=dict)
    result: Optional[ClusteringResult] = None
    quality: Optional[QualityReport] = None
    status: JobStatus = JobStatus.IDLE
    error: Optional[str] = None
    progress: Optional[ProgressMessage] = None
    active_job_id: Optional[str] = None

    @property
    def current_parameters(self) -> AlgorithmParameters:
        return self.parameters[self.algorithm]


@handle_exceptions(Exception, default_return=None)
def _assess_quality(
    assessor: QualityAssessor,
    job: Job,
    result: ClusteringResult,
) -> Optional[QualityReport]:
    return assessor.evaluate(job.dataset.points, result.clusters, job.dataset.labels)


# =============================================================================
# Coordinator
# =============================================================================


class Coordinator:
    """Single-flight job coordinator for the playground."""

    def __init__(
        self,
        executor: BaseExecutor,
        settings: Optional[Settings] = None,
        quality_assessor: Optional[QualityAssessor] = None,
    ):
        """
        Args:
            executor: Started (or to-be-started) background executor
            settings: Application settings (global settings if None)
            quality_assessor: Quality hook (a QualityAssessor when automatic
                assessment is enabled and None is given)
        """
        self.settings = settings or get_settings()
        coordinator_settings = self.settings.coordinator

        self.executor = executor
        self.executor.set_listener(self._on_executor_message)

        self.realtime_updates = coordinator_settings.realtime_parameter_updates
        if quality_assessor is None and coordinator_settings.auto_quality_assessment:
            quality_assessor = QualityAssessor()
        self.quality_assessor = quality_assessor

        self.history: HistoryStack[HistoryEntry] = HistoryStack(coordinator_settings.history_capacity)
        self._debouncer = Debouncer(coordinator_settings.debounce_seconds, self._debounced_run)

        self._machine = CoordinatorState.IDLE
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active_job: Optional[Job] = None
        self._outcome: Optional[asyncio.Future] = None
        self._listeners: List[StateListener] = []

        defaults = {
            name: self.settings.default_parameters(name)
            for name in ClusteringEngine.available_algorithms()
        }
        self._state = PlaygroundState(
            algorithm=self.settings.clustering.default_algorithm,
            parameters=defaults,
        )

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PlaygroundState:
        return self._state

    @property
    def lifecycle(self) -> CoordinatorState:
        return self._machine

    @property
    def active_job(self) -> Optional[Job]:
        return self._active_job

    @property
    def is_busy(self) -> bool:
        return self._machine != CoordinatorState.IDLE

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, **changes: Any) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("state_listener_failed")

    def _transition(self, target: CoordinatorState) -> None:
        if target not in _TRANSITIONS[self._machine]:
            raise JobStateError(f"Invalid transition {self._machine.value} -> {target.value}")
        logger.debug("coordinator_transition", source=self._machine.value, target=target.value)
        self._machine = target

    def _ensure_idle(self, action: str) -> None:
        if self._machine != CoordinatorState.IDLE:
            raise CoordinatorBusyError(
                f"Cannot {action} while job {self._active_job.job_id if self._active_job else '?'} is running",
                details={"state": self._machine.value},
            )

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def set_dataset(self, data: Any, labels: Optional[List[Any]] = None) -> Dataset:
        """
        Replace the dataset. A running job (on the old data) is cancelled and
        the current result is cleared.
        """
        dataset = data if isinstance(data, Dataset) else Dataset(data, labels)
        if self._active_job is not None:
            self.cancel()
        self._debouncer.cancel()
        self._set_state(
            dataset=dataset,
            result=None,
            quality=None,
            status=JobStatus.IDLE,
            error=None,
            progress=None,
        )
        logger.info("dataset_set", n_points=len(dataset), dimension=dataset.dimension)
        return dataset

    def set_algorithm(self, algorithm: str) -> str:
        """Select the algorithm used by the next submission."""
        name = ClusteringEngine.resolve_algorithm(algorithm)
        self._set_state(algorithm=name)
        return name

    def set_parameter(self, name: str, value: Any, algorithm: Optional[str] = None) -> AlgorithmParameters:
        """
        Change one parameter (snake_case or camelCase name).

        With a result on screen and real-time updates enabled, schedules a
        debounced re-run; every edit restarts the quiescence window.

        Raises:
            InvalidParameterError: Unknown parameter or invalid value
        """
        algorithm = ClusteringEngine.resolve_algorithm(algorithm or self._state.algorithm)
        current = self._state.parameters[algorithm]
        model = type(current)

        field_name = next(
            (
                field_name
                for field_name, info in model.model_fields.items()
                if name in (field_name, info.alias)
            ),
            None,
        )
        if field_name is None:
            raise InvalidParameterError(
                f"Unknown {algorithm} parameter '{name}'",
                details={"parameter": name, "known": list(model.model_fields)},
            )

        try:
            updated = model.model_validate({**current.model_dump(), field_name: value})
        except ValidationError as e:
            raise InvalidParameterError(
                f"Invalid value for {algorithm}.{field_name}: {value!r}",
                details={"errors": format_validation_errors(e)},
            )

        self._set_state(parameters={**self._state.parameters, algorithm: updated})
        logger.debug("parameter_set", algorithm=algorithm, parameter=field_name, value=value)

        if self.realtime_updates and self._state.result is not None and algorithm == self._state.algorithm:
            self._debouncer.trigger()

        return updated

    def _debounced_run(self) -> None:
        if self._machine != CoordinatorState.IDLE:
            logger.info("debounced_run_rejected_busy", job_id=self._active_job.job_id if self._active_job else None)
            self._set_state(status=JobStatus.BUSY)
            return
        try:
            self.submit()
        except ClusteringServiceError as e:
            logger.warning("debounced_run_failed", error=e.message)
            self._set_state(status=JobStatus.FAILED, error=e.message)

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------

    def submit(self) -> str:
        """
        Submit the current dataset/algorithm/parameters as a new job.

        Must be called from the event loop thread.

        Returns:
            The job id

        Raises:
            CoordinatorBusyError: A job is already submitting or running
            InsufficientDataError: No dataset loaded
        """
        self._ensure_idle("submit")
        state = self._state
        if state.dataset is None:
            raise InsufficientDataError("No dataset loaded")

        self._loop = asyncio.get_running_loop()
        self._transition(CoordinatorState.SUBMITTING)
        self._debouncer.cancel()

        job = Job(
            job_id=uuid.uuid4().hex,
            algorithm=state.algorithm,
            parameters=state.current_parameters,
            dataset=state.dataset,
        )
        self._active_job = job
        self._outcome = self._loop.create_future()

        try:
            self.executor.submit(
                job.job_id,
                job.algorithm,
                job.dataset.to_list(),
                job.parameters.model_dump(mode="json"),
            )
        except Exception:
            self._active_job = None
            self._outcome = None
            self._transition(CoordinatorState.IDLE)
            raise

        self._transition(CoordinatorState.RUNNING)
        self._set_state(
            status=JobStatus.RUNNING,
            error=None,
            progress=None,
            active_job_id=job.job_id,
        )
        logger.info("job_submitted", job_id=job.job_id, algorithm=job.algorithm, n_points=len(job.dataset))
        return job.job_id

    async def run(self) -> JobOutcome:
        """Submit and wait for the terminal outcome."""
        self.submit()
        return await self.wait()

    async def wait(self) -> JobOutcome:
        """
        Wait for the outcome of the active job.

        Raises:
            JobStateError: No job is active
        """
        if self._outcome is None:
            raise JobStateError("No job is active")
        return await self._outcome

    def cancel(self) -> bool:
        """
        Cancel the active job. The coordinator is IDLE again immediately;
        any later reply for the job is ignored.

        Returns:
            True if a job was cancelled
        """
        job = self._active_job
        if job is None:
            return False
        self.executor.cancel(job.job_id)
        logger.info("job_cancelled", job_id=job.job_id)
        self._finish(
            job,
            JobOutcome(job_id=job.job_id, status=JobStatus.CANCELLED),
            status=JobStatus.CANCELLED,
            progress=None,
        )
        return True

    def _on_executor_message(self, payload: Dict[str, Any]) -> None:
        """Executor listener thread -> event loop."""
        loop = self._loop
        if loop is None:
            logger.debug("message_before_first_submit_dropped", type=payload.get("type"))
            return
        try:
            loop.call_soon_threadsafe(self.handle_message, payload)
        except RuntimeError:
            logger.debug("event_loop_closed_message_dropped", type=payload.get("type"))

    def handle_message(self, payload: Dict[str, Any]) -> None:
        """Apply one executor reply (event loop thread)."""
        try:
            message = parse_message(payload)
        except ValidationError as e:
            logger.warning("malformed_executor_message", error=str(e))
            return

        job = self._active_job
        if job is None or message.job_id != job.job_id:
            logger.debug("stale_message_ignored", job_id=message.job_id, type=message.type)
            return

        if isinstance(message, StartedMessage):
            logger.debug("job_started", job_id=job.job_id, n_points=message.n_points)
        elif isinstance(message, ProgressMessage):
            self._set_state(progress=message)
        elif isinstance(message, CompleteMessage):
            self._complete(job, message.result)
        elif isinstance(message, ErrorMessage):
            self._fail(job, message.error)
        elif isinstance(message, CancelledMessage):
            self._finish(
                job,
                JobOutcome(job_id=job.job_id, status=JobStatus.CANCELLED),
                status=JobStatus.CANCELLED,
                progress=None,
            )

    def _complete(self, job: Job, result: ClusteringResult) -> None:
        quality = None
        if self.quality_assessor is not None:
            quality = _assess_quality(self.quality_assessor, job, result)

        self.history.push(
            HistoryEntry(
                dataset=job.dataset,
                algorithm=job.algorithm,
                parameters=job.parameters,
                result=result,
                quality=quality,
                job_id=job.job_id,
            )
        )
        logger.info(
            "job_completed",
            job_id=job.job_id,
            n_clusters=result.n_clusters,
            outliers=result.outlier_count,
            execution_time_ms=round(result.execution_time_ms, 3),
            overall_score=quality.summary.overall_score if quality else None,
        )
        self._finish(
            job,
            JobOutcome(job_id=job.job_id, status=JobStatus.COMPLETED, result=result, quality=quality),
            status=JobStatus.COMPLETED,
            result=result,
            quality=quality,
            progress=None,
        )

    def _fail(self, job: Job, error: ErrorPayload) -> None:
        # Previous result and history stay untouched
        logger.warning("job_failed", job_id=job.job_id, error=error.message, kind=error.kind)
        self._finish(
            job,
            JobOutcome(job_id=job.job_id, status=JobStatus.FAILED, error=error),
            status=JobStatus.FAILED,
            error=error.message,
            progress=None,
        )

    def _finish(self, job: Job, outcome: JobOutcome, **changes: Any) -> None:
        outcome_future = self._outcome
        self._active_job = None
        self._outcome = None
        self._transition(CoordinatorState.IDLE)
        self._set_state(active_job_id=None, **changes)
        if outcome_future is not None and not outcome_future.done():
            outcome_future.set_result(outcome)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def undo(self) -> Optional[HistoryEntry]:
        """
        Restore the previous history entry.

        Raises:
            CoordinatorBusyError: A job is running
        """
        self._ensure_idle("undo")
        entry = self.history.undo()
        if entry is not None:
            self._restore(entry)
        return entry

    def redo(self) -> Optional[HistoryEntry]:
        """
        Restore the next history entry.

        Raises:
            CoordinatorBusyError: A job is running
        """
        self._ensure_idle("redo")
        entry = self.history.redo()
        if entry is not None:
            self._restore(entry)
        return entry

    def restore(self, job_id: str) -> HistoryEntry:
        """
        Jump to the history entry produced by `job_id`.

        Moves the cursor like undo/redo; entries are kept.

        Raises:
            CoordinatorBusyError: A job is running
            JobNotFoundError: No history entry for the job
        """
        self._ensure_idle("restore")
        for index, entry in enumerate(self.history.entries):
            if entry.job_id == job_id:
                self.history.seek(index)
                self._restore(entry)
                return entry
        raise JobNotFoundError(
            f"Job {job_id} is not in the history",
            details={"job_id": job_id, "history_size": len(self.history)},
        )

    def _restore(self, entry: HistoryEntry) -> None:
        self._debouncer.cancel()
        self._set_state(
            dataset=entry.dataset,
            algorithm=entry.algorithm,
            parameters={**self._state.parameters, entry.algorithm: entry.parameters},
            result=entry.result,
            quality=entry.quality,
            status=JobStatus.RESTORED,
            error=None,
            progress=None,
        )
        logger.info("history_restored", job_id=entry.job_id, cursor=self.history.cursor)

    def close(self) -> None:
        """Drop pending re-runs and cancel the active job."""
        self._debouncer.cancel()
        self.cancel()

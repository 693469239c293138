"""
Executor worker loop.

Runs inside the isolated execution context (a spawned process or a daemon
thread) and owns exactly one algorithm invocation at a time:
- Reads request dictionaries (`cluster` / `cancel`) from a request queue
- Replies with `started`, zero or more `progress`, then one terminal
  `complete` / `error`, or `cancelled` for a cancelled job
- Converts every failure into an `error` message; the loop never dies on a
  bad request

Cancellation is cooperative: while a job runs, the algorithm's check points
drain the request queue without blocking. Cancels are applied immediately,
`cluster` requests that arrive meanwhile are buffered and served in order.
"""

import queue
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import numpy as np
import structlog
from pydantic import ValidationError

from cluster_playground.core.clustering_engine import ClusteringEngine
from cluster_playground.schemas.data_models import (
    CancelledMessage,
    CancelRequest,
    ClusterRequest,
    CompleteMessage,
    ErrorMessage,
    ErrorPayload,
    ProgressMessage,
    StartedMessage,
    parse_request,
)
from cluster_playground.utils.advanced_logging import (
    LogContext,
    MetricsLogger,
    PerformanceLogger,
    configure_logging,
)
from cluster_playground.utils.error_handling import (
    ClusteringServiceError,
    JobCancelledError,
    ProtocolError,
    error_payload,
)

logger = structlog.get_logger(__name__)

# Request that stops the worker loop
SHUTDOWN = None


class JobRunner:
    """
    Serves executor requests and acts as the ProgressReporter of the
    running algorithm.
    """

    def __init__(
        self,
        requests: Any,
        emit: Callable[[Dict[str, Any]], None],
        engine: Optional[ClusteringEngine] = None,
        cancel_poll_interval: float = 0.02,
        log_resource_usage: bool = False,
    ):
        """
        Args:
            requests: Queue-like object with get() and get_nowait()
            emit: Sends one reply dictionary to the parent
            engine: Clustering engine (default progress intervals if None)
            cancel_poll_interval: Minimum seconds between cancel polls at
                algorithm check points (progress reports always poll)
            log_resource_usage: Log CPU/memory after every job
        """
        self._requests = requests
        self._emit = emit
        self.engine = engine or ClusteringEngine()
        self.cancel_poll_interval = cancel_poll_interval
        self._metrics = MetricsLogger() if log_resource_usage else None

        self._pending: Deque[Dict[str, Any]] = deque()
        self._active_job_id: Optional[str] = None
        self._active_algorithm: Optional[str] = None
        self._active_cancelled = False
        self._last_poll = 0.0
        self.stopping = False

    # -------------------------------------------------------------------------
    # Request loop
    # -------------------------------------------------------------------------

    def serve_forever(self) -> None:
        """Serve requests until the shutdown sentinel arrives."""
        logger.info("executor_worker_started")
        while not self.stopping:
            raw = self._pending.popleft() if self._pending else self._requests.get()
            if raw is SHUTDOWN:
                break
            self.handle(raw)
        logger.info("executor_worker_stopped")

    def handle(self, raw: Any) -> None:
        """Dispatch one raw request dictionary."""
        try:
            request = parse_request(raw)
        except (ValidationError, TypeError, ValueError) as e:
            self._reject(raw, e)
            return

        if isinstance(request, CancelRequest):
            self._cancel(request.job_id)
        else:
            self.run_job(request)

    def _reject(self, raw: Any, error: Exception) -> None:
        job_id = algorithm = None
        if isinstance(raw, dict):
            job_id = raw.get("job_id") or raw.get("jobId")
            algorithm = raw.get("algorithm")
        logger.warning("malformed_request", job_id=job_id, error=str(error))
        failure = ProtocolError(f"Malformed executor request: {error}")
        self._send(
            ErrorMessage(
                job_id=job_id if isinstance(job_id, str) else None,
                algorithm=algorithm if isinstance(algorithm, str) else None,
                error=ErrorPayload(**error_payload(failure)),
            )
        )

    def _cancel(self, job_id: str) -> None:
        if job_id == self._active_job_id:
            self._active_cancelled = True
            logger.info("job_cancel_requested", job_id=job_id)
            return

        # Buffered but not started yet
        for raw in list(self._pending):
            if isinstance(raw, dict) and (raw.get("job_id") or raw.get("jobId")) == job_id:
                self._pending.remove(raw)
                logger.info("queued_job_cancelled", job_id=job_id)
                self._send(CancelledMessage(job_id=job_id))
                return

        logger.debug("cancel_for_inactive_job_ignored", job_id=job_id)

    # -------------------------------------------------------------------------
    # Job execution
    # -------------------------------------------------------------------------

    def run_job(self, request: ClusterRequest) -> None:
        """Run one clustering job and emit its messages."""
        job_id = request.job_id
        self._active_job_id = job_id
        self._active_algorithm = request.algorithm
        self._active_cancelled = False
        self._last_poll = 0.0

        with LogContext.correlation_context(job_id):
            try:
                algorithm = self.engine.resolve_algorithm(request.algorithm)
                self._active_algorithm = algorithm
                clusterer = self.engine.create(algorithm, request.options)
                data = np.asarray(request.data, dtype=float)

                self._send(
                    StartedMessage(job_id=job_id, algorithm=algorithm, n_points=len(data))
                )

                with PerformanceLogger(
                    "cluster_job",
                    logger=logger,
                    item_count=len(data),
                    job_id=job_id,
                    algorithm=algorithm,
                ):
                    result = clusterer.cluster(data, reporter=self)

                # A cancel read at the last check point still wins
                self._poll(force=True)
                if self._active_cancelled:
                    raise JobCancelledError(f"Job {job_id} cancelled")

                self._send(CompleteMessage(job_id=job_id, algorithm=algorithm, result=result))

            except JobCancelledError:
                logger.info("job_cancelled", job_id=job_id)
                self._send(CancelledMessage(job_id=job_id))

            except ClusteringServiceError as e:
                logger.warning(
                    "job_failed",
                    job_id=job_id,
                    error=e.message,
                    error_code=e.error_code,
                    kind=e.kind,
                )
                self._send_error(job_id, e)

            except Exception as e:
                logger.exception("job_crashed", job_id=job_id, error=str(e))
                self._send_error(job_id, e)

            finally:
                self._active_job_id = None
                self._active_algorithm = None
                self._active_cancelled = False
                if self._metrics is not None:
                    self._metrics.log_cpu_memory(context="after_job")

    def _send_error(self, job_id: str, error: BaseException) -> None:
        self._send(
            ErrorMessage(
                job_id=job_id,
                algorithm=self._active_algorithm,
                error=ErrorPayload(**error_payload(error)),
            )
        )

    def _send(self, message: Any) -> None:
        self._emit(message.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # ProgressReporter
    # -------------------------------------------------------------------------

    def report(self, **fields: Any) -> None:
        """Emit progress unless the job was cancelled."""
        self.check_cancelled(force=True)
        self._send(
            ProgressMessage(
                job_id=self._active_job_id,
                algorithm=self._active_algorithm,
                **fields,
            )
        )

    def check_cancelled(self, force: bool = False) -> None:
        """Raise JobCancelledError once a cancel for the active job was read."""
        self._poll(force=force)
        if self._active_cancelled:
            raise JobCancelledError(f"Job {self._active_job_id} cancelled")

    def _poll(self, force: bool = False) -> None:
        """Drain queued requests without blocking."""
        now = time.monotonic()
        if not force and now - self._last_poll < self.cancel_poll_interval:
            return
        self._last_poll = now

        while True:
            try:
                raw = self._requests.get_nowait()
            except queue.Empty:
                return

            if raw is SHUTDOWN:
                logger.info("shutdown_requested_during_job", job_id=self._active_job_id)
                self.stopping = True
                self._active_cancelled = True
                continue

            job_id = (raw.get("job_id") or raw.get("jobId")) if isinstance(raw, dict) else None
            if isinstance(raw, dict) and raw.get("type") == "cancel" and isinstance(job_id, str):
                self._cancel(job_id)
            else:
                self._pending.append(raw)


def worker_main(
    requests: Any,
    responses: Any,
    progress_intervals: Optional[Dict[str, int]] = None,
    cancel_poll_interval_ms: float = 20.0,
    log_resource_usage: bool = False,
    log_settings: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Entry point of the isolated execution context.

    Args:
        requests: Request queue (parent -> worker)
        responses: Reply queue (worker -> parent); receives SHUTDOWN on exit
        progress_intervals: Per-algorithm progress cadence
        cancel_poll_interval_ms: Minimum gap between cancel polls
        log_resource_usage: Log CPU/memory after every job
        log_settings: configure_logging() keyword arguments (spawned
            processes start with unconfigured logging)
    """
    if log_settings:
        configure_logging(**log_settings)

    runner = JobRunner(
        requests,
        responses.put,
        engine=ClusteringEngine(progress_intervals),
        cancel_poll_interval=cancel_poll_interval_ms / 1000.0,
        log_resource_usage=log_resource_usage,
    )
    try:
        runner.serve_forever()
    finally:
        responses.put(SHUTDOWN)

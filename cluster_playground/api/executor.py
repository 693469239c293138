"""
Background executor.

Parent-side handle of the isolated execution context running
`executor_worker.worker_main`. Two transports share the same worker loop:
- ProcessExecutor: a spawned process, requests/replies over
  multiprocessing queues (no shared memory)
- ThreadExecutor: a daemon thread over queue.Queue, for tests and notebooks

A listener thread pumps replies to the registered callback. The parent
boundary enforces the cancellation guarantee: once cancel() was called for
a job, its progress and complete/error replies are dropped and exactly one
`cancelled` reply is delivered.
"""

import multiprocessing
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from cluster_playground.api.executor_worker import SHUTDOWN, worker_main
from cluster_playground.config.settings_loader import ExecutorSettings, Settings
from cluster_playground.schemas.data_models import (
    CancelledMessage,
    CancelRequest,
    ClusterRequest,
    ErrorMessage,
    ErrorPayload,
    TERMINAL_MESSAGE_TYPES,
)
from cluster_playground.utils.error_handling import (
    ConfigurationError,
    ExecutorUnavailableError,
    error_payload,
)

logger = structlog.get_logger(__name__)

MessageCallback = Callable[[Dict[str, Any]], None]

# Listener wake-up period for worker liveness checks
_LISTENER_TIMEOUT = 0.5


class BaseExecutor(ABC):
    """Parent side of the executor message protocol."""

    def __init__(
        self,
        on_message: Optional[MessageCallback] = None,
        settings: Optional[ExecutorSettings] = None,
        progress_intervals: Optional[Dict[str, int]] = None,
        log_settings: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            on_message: Receives every delivered reply (listener thread)
            settings: Executor settings (defaults if None)
            progress_intervals: Per-algorithm progress cadence for the worker
            log_settings: Logging setup for the worker context
        """
        self.settings = settings or ExecutorSettings()
        self.progress_intervals = progress_intervals
        self.log_settings = log_settings
        self._on_message = on_message

        self._lock = threading.Lock()
        # Held while a reply is filtered and delivered, and while cancel() marks a job
        self._delivery_lock = threading.RLock()
        self._in_flight: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._listener: Optional[threading.Thread] = None
        self._started = False

        self.requests: Any = None
        self.responses: Any = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def set_listener(self, callback: Optional[MessageCallback]) -> None:
        self._on_message = callback

    @property
    def is_running(self) -> bool:
        return self._started and self._worker_alive()

    def start(self) -> "BaseExecutor":
        """Start the worker context and the reply listener."""
        if self._started:
            return self
        self._start_worker()
        self._listener = threading.Thread(
            target=self._listen,
            name=f"{type(self).__name__}-listener",
            daemon=True,
        )
        self._listener.start()
        self._started = True
        logger.info("executor_started", transport=type(self).__name__)
        return self

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the worker; jobs still in flight are abandoned."""
        if not self._started:
            return
        timeout = timeout if timeout is not None else self.settings.shutdown_timeout_seconds

        self.requests.put(SHUTDOWN)
        self._stop_worker(timeout)

        if self._listener is not None and self._listener.is_alive():
            if not self._worker_alive():
                # Wake the listener if the worker could not say goodbye
                self.responses.put(SHUTDOWN)
            self._listener.join(timeout)

        self._started = False
        with self._lock:
            abandoned = sorted(self._in_flight)
            self._in_flight.clear()
            self._cancelled.clear()
        logger.info("executor_stopped", abandoned_jobs=abandoned)

    def __enter__(self) -> "BaseExecutor":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def submit(
        self,
        job_id: str,
        algorithm: str,
        data: List[List[float]],
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Send a `cluster` request.

        Raises:
            ExecutorUnavailableError: If the executor is not running
        """
        if not self.is_running:
            raise ExecutorUnavailableError("Executor is not running")

        request = ClusterRequest(
            job_id=job_id,
            algorithm=algorithm,
            data=data,
            options=dict(options or {}),
        )
        with self._lock:
            self._in_flight.add(job_id)
        self._send(request.model_dump(mode="json"))
        logger.debug("job_submitted", job_id=job_id, algorithm=algorithm, n_points=len(data))

    def cancel(self, job_id: str) -> bool:
        """
        Send a `cancel` request.

        Returns:
            True if the job was in flight (a `cancelled` reply will follow)
        """
        with self._delivery_lock, self._lock:
            if job_id not in self._in_flight or job_id in self._cancelled:
                return False
            self._cancelled.add(job_id)

        if self.is_running:
            self._send(CancelRequest(job_id=job_id).model_dump(mode="json"))
        logger.info("job_cancel_sent", job_id=job_id)
        return True

    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)

    # -------------------------------------------------------------------------
    # Replies
    # -------------------------------------------------------------------------

    def _listen(self) -> None:
        while True:
            try:
                payload = self.responses.get(timeout=_LISTENER_TIMEOUT)
            except queue.Empty:
                if self._started and not self._worker_alive():
                    self._fail_in_flight("Executor worker exited unexpectedly")
                    return
                continue

            if payload is SHUTDOWN:
                return
            self._dispatch(payload)

    def _dispatch(self, payload: Dict[str, Any]) -> None:
        """Apply the cancellation guarantee, then deliver."""
        with self._delivery_lock:
            self._filter_and_deliver(payload)

    def _filter_and_deliver(self, payload: Dict[str, Any]) -> None:
        job_id = payload.get("job_id")
        message_type = payload.get("type")

        if job_id is not None:
            with self._lock:
                if job_id not in self._in_flight:
                    logger.debug("late_message_dropped", job_id=job_id, type=message_type)
                    return

                terminal = message_type in TERMINAL_MESSAGE_TYPES
                if job_id in self._cancelled:
                    if not terminal:
                        return
                    payload = CancelledMessage(job_id=job_id).model_dump(mode="json")

                if terminal:
                    self._in_flight.discard(job_id)
                    self._cancelled.discard(job_id)

        self._deliver(payload)

    def _deliver(self, payload: Dict[str, Any]) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(payload)
        except Exception:
            logger.exception("message_callback_failed", type=payload.get("type"))

    def _fail_in_flight(self, reason: str) -> None:
        """Terminate every in-flight job when the worker is gone."""
        with self._lock:
            jobs = sorted(self._in_flight)
            cancelled = set(self._cancelled)
            self._in_flight.clear()
            self._cancelled.clear()

        logger.error("executor_worker_lost", reason=reason, jobs=jobs)
        failure = ExecutorUnavailableError(reason)
        for job_id in jobs:
            if job_id in cancelled:
                message = CancelledMessage(job_id=job_id)
            else:
                message = ErrorMessage(job_id=job_id, error=ErrorPayload(**error_payload(failure)))
            self._deliver(message.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Transport hooks
    # -------------------------------------------------------------------------

    def _send(self, payload: Dict[str, Any]) -> None:
        self.requests.put(payload)

    def _worker_kwargs(self) -> Dict[str, Any]:
        return {
            "progress_intervals": self.progress_intervals,
            "cancel_poll_interval_ms": self.settings.cancel_poll_interval_ms,
            "log_resource_usage": self.settings.log_resource_usage,
            "log_settings": self.log_settings,
        }

    @abstractmethod
    def _start_worker(self) -> None:
        pass

    @abstractmethod
    def _stop_worker(self, timeout: float) -> None:
        pass

    @abstractmethod
    def _worker_alive(self) -> bool:
        pass


class ProcessExecutor(BaseExecutor):
    """Worker in a separate process (spawn start method by default)."""

    def _start_worker(self) -> None:
        context = multiprocessing.get_context(self.settings.start_method)
        self.requests = context.Queue()
        self.responses = context.Queue()
        self._process = context.Process(
            target=worker_main,
            args=(self.requests, self.responses),
            kwargs=self._worker_kwargs(),
            name="cluster-playground-executor",
            daemon=True,
        )
        self._process.start()

    def _stop_worker(self, timeout: float) -> None:
        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning("executor_worker_terminated", pid=self._process.pid)
            self._process.terminate()
            self._process.join(timeout)

    def _worker_alive(self) -> bool:
        process = getattr(self, "_process", None)
        return process is not None and process.is_alive()


class ThreadExecutor(BaseExecutor):
    """
    Worker on a daemon thread.

    Payloads are JSON-mode dictionaries built fresh on each side, so no
    object is shared between the caller and the worker.
    """

    def _start_worker(self) -> None:
        self.requests = queue.Queue()
        self.responses = queue.Queue()
        self._thread = threading.Thread(
            target=worker_main,
            args=(self.requests, self.responses),
            kwargs={**self._worker_kwargs(), "log_settings": None},
            name="cluster-playground-executor",
            daemon=True,
        )
        self._thread.start()

    def _stop_worker(self, timeout: float) -> None:
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("executor_thread_still_running")

    def _worker_alive(self) -> bool:
        thread = getattr(self, "_thread", None)
        return thread is not None and thread.is_alive()


EXECUTORS = {
    "process": ProcessExecutor,
    "thread": ThreadExecutor,
}


def create_executor(
    settings: Settings,
    on_message: Optional[MessageCallback] = None,
    transport: Optional[str] = None,
) -> BaseExecutor:
    """
    Build (not start) the executor configured in settings.

    Args:
        settings: Application settings
        on_message: Reply callback
        transport: Override of settings.executor.transport

    Raises:
        ConfigurationError: Unknown transport
    """
    name = transport or settings.executor.transport
    if name not in EXECUTORS:
        raise ConfigurationError(
            f"Unknown executor transport '{name}'. Supported: {list(EXECUTORS)}"
        )
    return EXECUTORS[name](
        on_message=on_message,
        settings=settings.executor,
        progress_intervals=settings.progress_intervals(),
        log_settings={
            "log_level": settings.logging.level,
            "log_format": settings.logging.format,
            "log_file": settings.logging.file,
            "service_name": settings.service.name,
        },
    )

"""
Advanced Logging Module

Provides structured logging with:
- structlog configuration over stdlib logging (JSON or console output)
- Correlation ID tracking (the executor binds the job id)
- Performance timing context manager for algorithm runs
- Process CPU/memory snapshots for the background executor
"""

import contextlib
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Optional

import psutil
import structlog
from structlog.types import EventDict, Processor


# =============================================================================
# Structured Logging Configuration
# =============================================================================


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    service_name: str = "cluster-playground",
) -> None:
    """
    Configure structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
        log_file: Optional log file path
        service_name: Service name for log context
    """
    # Configure stdlib logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Add file handler if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
        )
        file_handler.setLevel(getattr(logging, log_level.upper()))
        logging.root.addHandler(file_handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context(service_name),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def add_service_context(service_name: str) -> Processor:
    """
    Add service-level context to all log events.

    Args:
        service_name: Service name

    Returns:
        Processor function
    """

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["service"] = service_name
        correlation_id = LogContext.get_correlation_id()
        if correlation_id and "correlation_id" not in event_dict:
            event_dict["correlation_id"] = correlation_id
        return event_dict

    return processor


# =============================================================================
# Correlation ID Context
# =============================================================================


class LogContext:
    """
    Correlation ID tracking.

    The executor sets the job id as correlation id while a job runs so that
    every log line of a run can be grouped.
    """

    _correlation_id: Optional[str] = None

    @classmethod
    def set_correlation_id(cls, correlation_id: str) -> None:
        """Set correlation ID for current context."""
        cls._correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> Optional[str]:
        """Get current correlation ID."""
        return cls._correlation_id

    @classmethod
    def clear_correlation_id(cls) -> None:
        """Clear correlation ID."""
        cls._correlation_id = None

    @classmethod
    @contextlib.contextmanager
    def correlation_context(cls, correlation_id: str):
        """
        Context manager for correlation ID.

        Example:
            with LogContext.correlation_context("job-123"):
                logger.info("processing")  # Includes correlation_id
        """
        previous_id = cls._correlation_id
        cls._correlation_id = correlation_id
        try:
            yield
        finally:
            cls._correlation_id = previous_id


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get logger with automatic correlation ID binding.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound logger instance
    """
    logger = structlog.get_logger(name)

    correlation_id = LogContext.get_correlation_id()
    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)

    return logger


# =============================================================================
# Performance Logger
# =============================================================================


class PerformanceLogger:
    """
    Context manager for automatic performance timing and logging.

    Tracks execution time and optional throughput metrics.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.BoundLogger] = None,
        log_level: str = "info",
        item_count: Optional[int] = None,
        **extra_context: Any,
    ):
        """
        Initialize performance logger.

        Args:
            operation: Operation name for logging
            logger: Logger instance (creates new if None)
            log_level: Log level for output
            item_count: Number of items processed (for throughput)
            **extra_context: Additional context fields
        """
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.log_level = log_level
        self.item_count = item_count
        self.extra_context = extra_context
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        """Start timing."""
        self.start_time = time.perf_counter()
        self.logger.debug(
            "operation_started",
            operation=self.operation,
            **self.extra_context,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop timing and log results."""
        self.end_time = time.perf_counter()
        duration = self.end_time - self.start_time

        log_data = {
            "operation": self.operation,
            "duration_seconds": round(duration, 3),
            **self.extra_context,
        }

        if self.item_count is not None and self.item_count > 0 and duration > 0:
            log_data["item_count"] = self.item_count
            log_data["items_per_second"] = round(self.item_count / duration, 2)

        if exc_type is not None:
            log_data["error"] = str(exc_val)
            log_data["error_type"] = exc_type.__name__
            self.logger.warning("operation_aborted", **log_data)
        else:
            getattr(self.logger, self.log_level)("operation_completed", **log_data)

    @property
    def elapsed_time(self) -> float:
        """Get elapsed time in seconds (even if context not exited)."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.perf_counter()
        return end - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds."""
        return self.elapsed_time * 1000.0


# =============================================================================
# Metrics Logger
# =============================================================================


class MetricsLogger:
    """
    Logger for process metrics (CPU, memory).

    The background executor logs a snapshot after each job so that memory
    growth of the long-lived worker can be spotted.
    """

    def __init__(self, logger: Optional[structlog.BoundLogger] = None):
        """
        Initialize metrics logger.

        Args:
            logger: Logger instance
        """
        self.logger = logger or get_logger(__name__)
        self.process = psutil.Process()

    def log_cpu_memory(self, context: Optional[str] = None) -> dict[str, Any]:
        """
        Log CPU and memory metrics.

        Args:
            context: Optional context label

        Returns:
            Metrics dictionary
        """
        metrics = {
            "pid": self.process.pid,
            "cpu_percent": self.process.cpu_percent(),
            "memory_mb": round(self.process.memory_info().rss / (1024 * 1024), 2),
            "memory_percent": round(self.process.memory_percent(), 3),
        }

        if context:
            metrics["context"] = context

        self.logger.debug("cpu_memory_metrics", **metrics)
        return metrics

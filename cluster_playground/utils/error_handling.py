"""
Error Handling Module

Provides the error infrastructure shared by the compute engine, the executor
and the coordinator:
- Custom exception hierarchy (input / execution / job lifecycle)
- Conversion of exceptions into executor error payloads
- Exception-swallowing decorator for optional hooks
"""

import functools
import time
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

import structlog


logger = structlog.get_logger(__name__)


# =============================================================================
# Custom Exception Hierarchy
# =============================================================================


class ClusteringServiceError(Exception):
    """Base exception for all playground engine errors."""

    kind = "execution"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/messages."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class ConfigurationError(ClusteringServiceError):
    """Error in service configuration."""
    pass


# Input Errors (bad request: reported immediately, no partial result)
class InputError(ClusteringServiceError):
    """Base class for invalid job input."""

    kind = "input"


class InvalidAlgorithmError(InputError):
    """Unknown or unsupported clustering algorithm."""
    pass


class InvalidParameterError(InputError):
    """Algorithm parameter missing, unknown or out of range."""
    pass


class InsufficientDataError(InputError):
    """Not enough data points for clustering."""
    pass


class ProtocolError(InputError):
    """Malformed executor message."""
    pass


# Execution Errors
class ExecutionError(ClusteringServiceError):
    """Unexpected failure while an algorithm was running."""

    kind = "execution"


class NumericalError(ExecutionError):
    """Arithmetic produced non-finite values."""
    pass


class ExecutorUnavailableError(ExecutionError):
    """Background executor is not running or its channel is closed."""
    pass


# Job Lifecycle Errors
class JobError(ClusteringServiceError):
    """Base class for job-related errors."""
    pass


class JobNotFoundError(JobError):
    """Job does not exist."""
    pass


class JobStateError(JobError):
    """Invalid job state transition."""
    pass


class CoordinatorBusyError(JobStateError):
    """A job is already in flight (single-flight policy)."""
    pass


class JobCancelledError(JobError):
    """Job was cancelled. A terminal outcome, not a failure."""

    kind = "cancelled"


# =============================================================================
# Error Payloads
# =============================================================================


def error_payload(error: BaseException) -> Dict[str, Any]:
    """
    Convert an exception into the executor's error payload.

    Engine exceptions keep their kind and code; anything else is an
    unexpected execution failure.

    Args:
        error: Exception raised while handling a request

    Returns:
        Dictionary with message, kind and error_code
    """
    if isinstance(error, ClusteringServiceError):
        return {
            "message": error.message,
            "kind": error.kind,
            "error_code": error.error_code,
        }

    return {
        "message": str(error) or error.__class__.__name__,
        "kind": ExecutionError.kind,
        "error_code": error.__class__.__name__,
    }


# =============================================================================
# Utility Functions
# =============================================================================


T = TypeVar("T")


def handle_exceptions(
    *exception_types: Type[Exception],
    default_return: Optional[Any] = None,
    log_errors: bool = True,
) -> Callable[[Callable[..., T]], Callable[..., Union[T, Any]]]:
    """
    Decorator to catch and handle specific exceptions.

    Args:
        *exception_types: Exception types to catch
        default_return: Value to return on exception
        log_errors: Whether to log caught exceptions

    Example:
        @handle_exceptions(ValueError, KeyError, default_return=None)
        def parse_data(data):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., Union[T, Any]]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Union[T, Any]:
            try:
                return func(*args, **kwargs)
            except exception_types as e:
                if log_errors:
                    logger.warning(
                        "exception_handled",
                        function=func.__name__,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                return default_return

        return wrapper

    return decorator

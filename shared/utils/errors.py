"""
Custom error classes for distribution modeling services.

Provides structured error handling with error codes,
details, and proper exception chaining.
"""

from typing import Optional, Dict, Any


class DistributionError(Exception):
    """Base exception for distribution modeling errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DistributionError):
    """Error raised when request or payload validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details or {}
        )
        self.field = field
        self.value = value

        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)


class ConfigurationError(DistributionError):
    """Error raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details or {}
        )
        self.config_key = config_key
        self.config_value = config_value

        if config_key:
            self.details["config_key"] = config_key
        if config_value is not None:
            self.details["config_value"] = str(config_value)


class UnknownQueueError(ConfigurationError):
    """Error raised when a queue class is not configured."""

    def __init__(self, queue: Any):
        super().__init__(
            message=f"Unknown queue: {queue}",
            config_key="queue",
            config_value=queue,
        )
        self.error_code = "UNKNOWN_QUEUE"
        self.queue = queue


class UnknownOperationError(ConfigurationError):
    """Error raised when no handler is registered for a (queue, operation) pair."""

    def __init__(self, queue: Any, operation: str):
        super().__init__(
            message=f"No handler registered for {operation} on queue {queue}",
            config_key="operation",
            config_value=operation,
            details={"queue": str(queue)},
        )
        self.error_code = "UNKNOWN_OPERATION"
        self.queue = queue
        self.operation = operation


class JobNotFoundError(DistributionError):
    """Error raised when a job id cannot be resolved."""

    def __init__(self, queue: Any, job_id: str):
        super().__init__(
            message=f"Job {job_id} not found",
            error_code="JOB_NOT_FOUND",
            details={"queue": str(queue), "job_id": job_id},
        )
        self.queue = queue
        self.job_id = job_id


class JobFailedError(DistributionError):
    """Error raised to waiters when a job is dead."""

    def __init__(
        self,
        message: str,
        job_id: str,
        attempts_made: int
    ):
        super().__init__(
            message=message,
            error_code="JOB_FAILED",
            details={"job_id": job_id, "attempts_made": attempts_made},
        )
        self.job_id = job_id
        self.attempts_made = attempts_made


class QueueUnavailableError(DistributionError):
    """Error raised when the queue backend cannot accept a job."""

    def __init__(
        self,
        message: str,
        queue: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="QUEUE_UNAVAILABLE",
            details=details or {}
        )
        self.queue = queue

        if queue is not None:
            self.details["queue"] = str(queue)


class ViewNotFoundError(DistributionError):
    """Error raised when a materialized view is not registered."""

    def __init__(self, view_name: str):
        super().__init__(
            message=f"Unknown view: {view_name}",
            error_code="VIEW_NOT_FOUND",
            details={"view_name": view_name},
        )
        self.view_name = view_name


class ViewQueryError(DistributionError):
    """Error raised when a read from a materialized view fails."""

    def __init__(self, view_name: str, message: str):
        super().__init__(
            message=f"Query on {view_name} failed: {message}",
            error_code="VIEW_QUERY_FAILED",
            details={"view_name": view_name},
        )
        self.view_name = view_name

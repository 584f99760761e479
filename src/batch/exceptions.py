"""
Batch queue exception classes.

All exceptions inherit from the core ``BatchQueueError`` hierarchy so the
HTTP layer maps them onto status codes without knowing about backends.
"""

from __future__ import annotations

from typing import Any

from core.exceptions import BatchQueueError, NotFoundError, ProcessingError, ResourceError, ValidationError


class InvalidRequestKeyError(ValidationError):
    """
    Exception raised when an explicitly assigned request key is rejected.

    This typically indicates:
    - Key longer than the storage key budget
    - Key containing a path separator
    - Attempt to change a key that has already been fixed

    Maps to HTTP 422 (Unprocessable Entity)
    """

    def __init__(
        self,
        message: str = "Illegal request key",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="INVALID_REQUEST_KEY",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class RequestNotFoundError(NotFoundError):
    """
    Exception raised when no queued, completed or cached request matches a key.

    Maps to HTTP 404 (Not Found)
    """

    def __init__(
        self,
        message: str = "Request not found",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="REQUEST_NOT_FOUND",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class QueueBackendError(ResourceError):
    """
    Exception raised when the queue store cannot be reached or misbehaves.

    Wraps the raw client exception (e.g. a Redis connection error).

    Maps to HTTP 503 (Service Unavailable)
    """

    def __init__(
        self,
        message: str = "Queue backend unavailable",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="QUEUE_BACKEND_ERROR",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class QueueContentionError(ResourceError):
    """
    Exception raised when conditional writes on one entry keep losing to other writers.

    Maps to HTTP 503 (Service Unavailable)
    """

    def __init__(
        self,
        message: str = "Queue entry is too contended to update",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="QUEUE_CONTENTION",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class CacheBackendError(ResourceError):
    """
    Exception raised when the result store fails to read, write or delete.

    Maps to HTTP 503 (Service Unavailable)
    """

    def __init__(
        self,
        message: str = "Result cache unavailable",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="CACHE_BACKEND_ERROR",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class UploadError(ProcessingError):
    """
    Exception raised when publishing a result fails.

    This typically indicates:
    - The background upload consumer died
    - The producer wrote to a pipe whose consumer had already failed

    Workers should respond by failing the request.

    Maps to HTTP 500 (Internal Server Error)
    """

    def __init__(
        self,
        message: str = "Result upload failed",
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="UPLOAD_ERROR",
            details=details,
            context=context,
            original_exception=original_exception,
        )


class RetryRequestError(BatchQueueError):
    """Raised by a worker handler to hand its request back to the queue instead of failing it."""

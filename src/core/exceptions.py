"""
Core exception classes for the batch queue service.

Every error raised by the queue, cache, pipe and worker layers derives from
``BatchQueueError`` so callers handle one hierarchy and never see a raw
backend exception. The four subclasses below decide the HTTP status used by
``core.error_handler``.
"""

from __future__ import annotations

import re
from typing import Any


class BatchQueueError(Exception):
    """
    Base exception class for all batch queue errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for categorization
        details: Additional error details (e.g., original exception message)
        context: Dictionary of request context (request key, backend, suffix...)
        original_exception: The original exception that was wrapped, if any
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._default_error_code()
        self.details = details
        self.context = context or {}
        self.original_exception = original_exception

    def _default_error_code(self) -> str:
        """Generate default error code from class name, e.g. UploadError -> UPLOAD_ERROR."""
        return re.sub(r"(?<!^)(?=[A-Z])", "_", self.__class__.__name__).upper()

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error
        """
        error_dict: dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }

        if self.details:
            error_dict["details"] = self.details

        if self.context:
            error_dict["context"] = self.context

        if self.original_exception:
            error_dict["original_exception"] = {
                "type": type(self.original_exception).__name__,
                "module": type(self.original_exception).__module__,
                "message": str(self.original_exception),
            }

        return error_dict


class ValidationError(BatchQueueError):
    """
    Input validation failed (HTTP 422).

    Examples: malformed request key, bad parameter encoding.
    """


class ResourceError(BatchQueueError):
    """
    A backing store is unavailable or contended (HTTP 503).

    Examples: Redis connection refused, cache directory not writable.
    """


class ProcessingError(BatchQueueError):
    """
    Processing failed unexpectedly (HTTP 500).

    Examples: result upload failed part way through.
    """


class NotFoundError(BatchQueueError):
    """
    A requested resource does not exist (HTTP 404).

    Examples: unknown request key, result not yet available.
    """

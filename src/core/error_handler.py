"""
Error handling utilities for the batch queue service.

This module provides utilities for consistent error handling across all endpoints:
- ErrorContext: Captures request context for logging and debugging
- Exception handlers: Convert the BatchQueueError hierarchy to structured HTTP responses
"""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.exceptions import BatchQueueError, NotFoundError, ProcessingError, ResourceError, ValidationError
from core.logging import logger_batch as logger
from core.settings import get_settings

settings = get_settings()


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class ErrorContext:
    """
    Captures request context for error logging and debugging.

    Example:
        ctx = ErrorContext.create(endpoint="/requests")
        ctx.add_request_info(key="report_year_2024", estimated_duration=60000)
        ctx.add_backend_info(queue="redis", cache="file")

        logger.error("Submit failed", extra=ctx.to_log_dict())
    """

    def __init__(self, request_id: str, endpoint: str) -> None:
        self.request_id = request_id
        self.endpoint = endpoint
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.data: dict[str, Any] = {}

    @classmethod
    def create(cls, request_id: str | None = None, endpoint: str = "") -> ErrorContext:
        """
        Create an ErrorContext, generating a request ID when none is given.

        Args:
            request_id: Optional request ID
            endpoint: API endpoint being called
        """
        return cls(request_id=request_id or _new_request_id(), endpoint=endpoint)

    def add_request_info(self, key: str | None = None, **kwargs: Any) -> ErrorContext:
        """
        Add information about the batch request being handled.

        Args:
            key: Request key
            **kwargs: Other request metadata (suffix, estimated_duration, ...)

        Returns:
            Self for method chaining
        """
        info: dict[str, Any] = {}
        if key is not None:
            info["key"] = key
        info.update(kwargs)
        self.data["request"] = info
        return self

    def add_params(self, params: dict[str, Any]) -> ErrorContext:
        self.data["params"] = params
        return self

    def add_backend_info(self, queue: str | None = None, cache: str | None = None, **kwargs: Any) -> ErrorContext:
        """Record which queue and cache backends served the call."""
        info: dict[str, Any] = {}
        if queue is not None:
            info["queue"] = queue
        if cache is not None:
            info["cache"] = cache
        info.update(kwargs)
        self.data["backend"] = info
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "endpoint": self.endpoint,
            "timestamp": self.timestamp,
            **self.data,
        }

    def to_log_dict(self) -> dict[str, Any]:
        """
        Flatten the context for structured logging.

        Nested sections become ``section_field`` keys, e.g. ``request_key``.
        """
        log_dict = {
            "request_id": self.request_id,
            "endpoint": self.endpoint,
            "timestamp": self.timestamp,
        }

        for key, value in self.data.items():
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    log_dict[f"{key}_{sub_key}"] = sub_value
            else:
                log_dict[key] = value

        return log_dict


def build_error_response(
    error: BatchQueueError,
    status_code: int,
    request_id: str | None = None,
    include_traceback: bool = False,
) -> dict[str, Any]:
    """
    Build a structured error response from a BatchQueueError.

    Args:
        error: The exception to convert
        status_code: HTTP status code
        request_id: Request ID to include in response
        include_traceback: Whether to include stack trace (only honoured with DEBUG)

    Returns:
        Dictionary ready for JSON serialization
    """
    response: dict[str, Any] = {
        "error": error.to_dict(),
        "status_code": status_code,
    }

    if request_id:
        response["request_id"] = request_id

    if include_traceback and settings.DEBUG:
        response["traceback"] = traceback.format_exc()

    return response


def _request_id_for(exc: BatchQueueError) -> str:
    return exc.context.get("request_id") or _new_request_id()


def _status_code_for(exc: BatchQueueError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ResourceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for the FastAPI application.

    Every BatchQueueError subclass maps onto one status code:
    ValidationError 422, NotFoundError 404, ResourceError 503, and
    ProcessingError or anything else in the hierarchy 500.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(BatchQueueError)
    async def batch_queue_error_handler(request: Request, exc: BatchQueueError) -> JSONResponse:
        status_code = _status_code_for(exc)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(
                "Request failed",
                extra={"path": request.url.path, "error_code": exc.error_code, "status_code": status_code},
            )
        return JSONResponse(
            status_code=status_code,
            content=build_error_response(
                exc,
                status_code,
                _request_id_for(exc),
                include_traceback=isinstance(exc, ProcessingError) or type(exc) is BatchQueueError,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle FastAPI request validation errors."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "error_code": "REQUEST_VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": jsonable_encoder(exc.errors()),
                },
                "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
                "request_id": _new_request_id(),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "error_code": f"HTTP_{exc.status_code}",
                    "message": exc.detail,
                },
                "status_code": exc.status_code,
                "request_id": _new_request_id(),
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle any unhandled exceptions (last resort)."""
        logger.error("Unhandled exception", extra={"path": request.url.path}, exc_info=exc)
        error_response: dict[str, Any] = {
            "error": {
                "error_code": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred",
                "details": f"{type(exc).__name__}: {str(exc)}",
            },
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
            "request_id": _new_request_id(),
        }

        if settings.DEBUG:
            error_response["traceback"] = traceback.format_exc()

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response,
        )

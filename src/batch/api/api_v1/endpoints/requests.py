"""
Batch request endpoints.

- Submit a request and get its current status back
- Query cheap or full status (queue position and ETA) by key
- Inspect the queue and download finished results

Keys travel as the ``key`` query parameter. Computed keys carry an escaped
``%2F`` for every ``/`` in the request URI, which would not survive path
routing once the server decodes the request path.

Handlers are plain ``def`` so FastAPI runs the blocking queue and cache calls
in its threadpool.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, BinaryIO

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from batch.exceptions import RequestNotFoundError
from batch.factory import get_request_manager
from batch.manager import RequestManager
from batch.request import validate_key
from batch.schemas.requests import RequestDescription, SubmitRequest
from batch.schemas.status import BatchStatus
from core.error_handler import ErrorContext
from core.logging import logger_batch as logger
from core.settings import get_settings

router = APIRouter()

settings = get_settings()

_CHUNK_SIZE = 64 * 1024


@router.post("/requests", response_model=BatchStatus, response_model_exclude_none=True)
def submit_request(body: SubmitRequest, manager: RequestManager = Depends(get_request_manager)) -> Any:
    """
    Submit a request for batch processing.

    Identical requests share one key, so submitting a request that is already
    queued or cached returns its existing status instead of queueing it twice.
    """
    ctx = ErrorContext.create(endpoint="/requests")
    ctx.add_params({"request_uri": body.request_uri, "sticky": body.sticky, "parameter_names": sorted(body.parameters)})

    request = body.to_batch_request(settings.DEFAULT_ESTIMATED_DURATION_MS)
    ctx.add_request_info(key=request.key, estimated_duration=request.estimated_duration)
    logger.info("Submitting batch request", extra=ctx.to_log_dict())
    return manager.submit(request)


@router.get("/requests/status", response_model=BatchStatus, response_model_exclude_none=True)
def request_status(
    key: str = Query(description="Request key as returned by submit"),
    manager: RequestManager = Depends(get_request_manager),
) -> Any:
    return manager.get_status(validate_key(key))


@router.get("/requests/full-status", response_model=BatchStatus, response_model_exclude_none=True)
def request_full_status(
    key: str = Query(description="Request key as returned by submit"),
    manager: RequestManager = Depends(get_request_manager),
) -> Any:
    """Status including position in queue and estimated time to completion."""
    return manager.get_full_status(validate_key(key))


@router.get("/requests/describe", response_model=RequestDescription)
def describe_request(
    key: str = Query(description="Request key as returned by submit"),
    manager: RequestManager = Depends(get_request_manager),
) -> Any:
    request = manager.find_request(validate_key(key))
    if request is None:
        ctx = ErrorContext.create(endpoint="/requests/describe").add_request_info(key=key)
        logger.info("Request not known to the queue", extra=ctx.to_log_dict())
        raise RequestNotFoundError(message=f"No queued or completed request with key '{key}'", context=ctx.to_dict())
    return RequestDescription.from_batch_request(request)


@router.get("/queue", response_model=list[BatchStatus], response_model_exclude_none=True)
def list_queue(manager: RequestManager = Depends(get_request_manager)) -> Any:
    """Pending and in-progress requests in arrival order."""
    return manager.get_queue()


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := stream.read(_CHUNK_SIZE):
            yield chunk
    finally:
        stream.close()


@router.get("/results")
def download_result(
    key: str = Query(description="Request key as returned by submit"),
    suffix: str | None = Query(default=None, description="Result format; defaults to the cache's default suffix"),
    manager: RequestManager = Depends(get_request_manager),
) -> StreamingResponse:
    """Stream a finished result with the media type of its format."""
    cache = manager.cache_manager
    suffix = suffix or cache.default_suffix
    stream = cache.read_result(validate_key(key), suffix)
    if stream is None:
        ctx = ErrorContext.create(endpoint="/results").add_request_info(key=key, suffix=suffix)
        logger.info("Result not available", extra=ctx.to_log_dict())
        raise RequestNotFoundError(message=f"No result available for '{key}'", context=ctx.to_dict())

    media_type = cache.content_type_for(suffix) or "application/octet-stream"
    return StreamingResponse(
        _iter_stream(stream),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{key}.{suffix}"'},
    )

"""
Result cache contract.

A cache manager persistently stores the result of each batch request so that
results produced by one worker can be found and served by any other instance.
Results are addressed by request key plus a suffix naming the format; every
configured cache has one default suffix, the canonical result format, and
alternate renderings may sit beside it.

Sticky results are stored apart from ordinary ones and are exempt from
``clear_non_sticky``.
"""

from __future__ import annotations

import io
import os
from abc import ABC, abstractmethod
from typing import BinaryIO, Union

from batch.exceptions import CacheBackendError
from batch.pipe import Pipe
from batch.request import BatchRequest
from core.logging import logger_batch as logger

GZIP_SUFFIX = ".gz"

MEDIA_TYPES = {
    "csv": "text/csv",
    "txt": "text/plain",
    "html": "text/html",
    "json": "application/json",
    "ttl": "text/turtle",
    "rdf": "application/rdf+xml",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
}

UploadSource = Union[bytes, bytearray, str, "os.PathLike[str]", BinaryIO]


class CacheManager(ABC):
    default_suffix: str

    @abstractmethod
    def get_result_url(self, key: str) -> str:
        """URL from which the result of the request is, or will be, available."""

    @abstractmethod
    def is_ready(self, key: str) -> bool:
        """True if the default-suffix result for the request has been published."""

    @abstractmethod
    def read_result(self, key: str, suffix: str | None = None) -> BinaryIO | None:
        """Readable stream over the stored result, or None if it isn't available."""

    @abstractmethod
    def upload(self, request: BatchRequest, source: UploadSource, suffix: str | None = None) -> None:
        """Publish a result from bytes, a binary stream or a file path."""

    @abstractmethod
    def open_upload(self, request: BatchRequest, suffix: str | None = None, compress: bool = False) -> Pipe:
        """Start a background upload and return the pipe the producer writes into."""

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def clear_non_sticky(self) -> None:
        pass

    @staticmethod
    def content_type_for(suffix: str) -> str | None:
        if suffix.endswith(GZIP_SUFFIX):
            suffix = suffix[: -len(GZIP_SUFFIX)]
        return MEDIA_TYPES.get(suffix)


class BaseCacheManager(CacheManager):
    """Upload plumbing shared by concrete stores, which only implement ``_store``."""

    def __init__(self, default_suffix: str = "csv") -> None:
        self.default_suffix = default_suffix

    @abstractmethod
    def _store(self, request: BatchRequest, suffix: str, stream: BinaryIO) -> None:
        """Copy ``stream`` into the store and make it visible in one atomic step."""

    def upload(self, request: BatchRequest, source: UploadSource, suffix: str | None = None) -> None:
        suffix = suffix or self.default_suffix
        if isinstance(source, (bytes, bytearray)):
            self._store(request, suffix, io.BytesIO(source))
        elif isinstance(source, (str, os.PathLike)):
            try:
                stream = open(source, "rb")
            except OSError as exc:
                raise CacheBackendError(
                    message="Failed to access upload file",
                    details=str(exc),
                    context={"request_key": request.key, "path": os.fspath(source)},
                    original_exception=exc,
                ) from exc
            with stream:
                self._store(request, suffix, stream)
        else:
            self._store(request, suffix, source)
        logger.info("Result uploaded", extra={"request_key": request.key, "suffix": suffix})

    def open_upload(self, request: BatchRequest, suffix: str | None = None, compress: bool = False) -> Pipe:
        suffix = suffix or self.default_suffix
        stored_suffix = suffix + GZIP_SUFFIX if compress else suffix

        def consume(stream: BinaryIO) -> None:
            self._store(request, stored_suffix, stream)
            logger.info("Result streamed to cache", extra={"request_key": request.key, "suffix": stored_suffix})

        pipe = Pipe(consume, compress=compress, name=f"upload-{request.key[:40]}")
        return pipe.start()

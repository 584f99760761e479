"""
Filesystem result cache.

Non-distributed, so mainly for development, tests and single-host
deployments. Layout under ``cache_dir``::

    persistent/<key>.<suffix>   sticky results
    cache/<key>.<suffix>        everything else

Writes go to a hidden temporary file in the target directory and are
renamed into place, so a result is either absent or complete.
"""

from __future__ import annotations

import gzip
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from batch.cache.base import GZIP_SUFFIX, BaseCacheManager
from batch.exceptions import CacheBackendError
from batch.request import BatchRequest

PERSISTENT_SEGMENT = "persistent"
TEMPORARY_SEGMENT = "cache"


class FileCacheManager(BaseCacheManager):
    def __init__(
        self,
        cache_dir: str | os.PathLike[str],
        url_prefix: str = "http://localhost/service/report/",
        default_suffix: str = "csv",
    ) -> None:
        super().__init__(default_suffix=default_suffix)
        self.cache_dir = Path(cache_dir).expanduser()
        self.url_prefix = url_prefix if url_prefix.endswith("/") else url_prefix + "/"
        for segment in (PERSISTENT_SEGMENT, TEMPORARY_SEGMENT):
            (self.cache_dir / segment).mkdir(parents=True, exist_ok=True)

    def _path(self, key: str, suffix: str, sticky: bool) -> Path:
        segment = PERSISTENT_SEGMENT if sticky else TEMPORARY_SEGMENT
        return self.cache_dir / segment / f"{key}.{suffix}"

    def _find(self, key: str, suffix: str) -> Path | None:
        """Locate a published result, sticky first, accepting a gzip variant of ``suffix``."""
        variants = [suffix] if suffix.endswith(GZIP_SUFFIX) else [suffix, suffix + GZIP_SUFFIX]
        for sticky in (True, False):
            for variant in variants:
                path = self._path(key, variant, sticky)
                if path.is_file():
                    return path
        return None

    def get_result_url(self, key: str) -> str:
        found = self._find(key, self.default_suffix)
        name = found.name if found is not None else f"{key}.{self.default_suffix}"
        return self.url_prefix + name

    def is_ready(self, key: str) -> bool:
        return self._find(key, self.default_suffix) is not None

    def read_result(self, key: str, suffix: str | None = None) -> BinaryIO | None:
        suffix = suffix or self.default_suffix
        path = self._find(key, suffix)
        if path is None:
            return None
        try:
            if path.name.endswith(GZIP_SUFFIX) and not suffix.endswith(GZIP_SUFFIX):
                return gzip.open(path, "rb")  # type: ignore[return-value]
            return open(path, "rb")
        except FileNotFoundError:
            # Cleared between lookup and open
            return None

    def _store(self, request: BatchRequest, suffix: str, stream: BinaryIO) -> None:
        target = self._path(request.key, suffix, request.sticky)
        try:
            fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".hide")
        except OSError as exc:
            raise CacheBackendError(
                details=str(exc), context={"request_key": request.key, "path": str(target)}, original_exception=exc
            ) from exc
        try:
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(stream, out)
            os.replace(temp_name, target)
        except BaseException as exc:
            Path(temp_name).unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise CacheBackendError(
                    message="Failed to write result to cache",
                    details=str(exc),
                    context={"request_key": request.key, "path": str(target)},
                    original_exception=exc,
                ) from exc
            raise

    def _reset(self, segment: str) -> None:
        directory = self.cache_dir / segment
        try:
            shutil.rmtree(directory, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise CacheBackendError(details=str(exc), context={"path": str(directory)}, original_exception=exc) from exc
        directory.mkdir(parents=True, exist_ok=True)

    def clear(self) -> None:
        self._reset(PERSISTENT_SEGMENT)
        self._reset(TEMPORARY_SEGMENT)

    def clear_non_sticky(self) -> None:
        self._reset(TEMPORARY_SEGMENT)

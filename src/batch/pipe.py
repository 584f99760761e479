"""
Streaming upload support.

A ``Pipe`` lets a producer write a result while a background thread uploads
it, so the result never has to be held in memory or staged by the producer.
The producer writes to ``pipe.source`` and MUST close it, on error paths
too, or the consumer waits for more bytes forever. Then it calls
``wait_for_completion()`` to block until the upload has landed.
"""

from __future__ import annotations

import contextlib
import gzip
import io
import queue
import threading
from collections.abc import Callable
from typing import BinaryIO

from batch.exceptions import UploadError
from core.logging import logger_batch as logger

_DEFAULT_MAX_CHUNKS = 16
_PUT_TIMEOUT_S = 0.1


class _Conduit:
    """Bounded chunk queue between producer and consumer; ``None`` marks end of stream."""

    def __init__(self, max_chunks: int) -> None:
        self.chunks: queue.Queue[bytes | None] = queue.Queue(maxsize=max_chunks)
        self.broken = threading.Event()
        self.aborted = threading.Event()

    def put(self, chunk: bytes) -> None:
        if not self._offer(chunk):
            raise UploadError(message="Upload consumer has stopped, result cannot be written")

    def finish(self) -> None:
        # A dead consumer no longer needs the end marker
        self._offer(None)

    def _offer(self, chunk: bytes | None) -> bool:
        while not self.broken.is_set():
            try:
                self.chunks.put(chunk, timeout=_PUT_TIMEOUT_S)
                return True
            except queue.Full:
                continue
        return False


class _ConduitWriter(io.RawIOBase):
    def __init__(self, conduit: _Conduit) -> None:
        self._conduit = conduit

    def writable(self) -> bool:
        return True

    def write(self, b: bytes | bytearray | memoryview) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("write to closed pipe")
        data = bytes(b)
        if data:
            self._conduit.put(data)
        return len(data)

    def close(self) -> None:
        if not self.closed:
            try:
                self._conduit.finish()
            finally:
                super().close()


class _ConduitReader(io.RawIOBase):
    def __init__(self, conduit: _Conduit) -> None:
        self._conduit = conduit
        self._pending = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        while not self._pending and not self._eof:
            chunk = self._conduit.chunks.get()
            if chunk is None:
                if self._conduit.aborted.is_set():
                    raise UploadError(message="Upload abandoned by producer")
                self._eof = True
            else:
                self._pending = chunk
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n


class _GzipSink(gzip.GzipFile):
    """Gzip writer that also closes the conduit it writes into."""

    def close(self) -> None:
        target = self.fileobj
        try:
            super().close()
        finally:
            if target is not None:
                target.close()


class Pipe:
    """
    Couples a producer-writable sink to a consumer running on its own thread.

    Args:
        consumer: Called on the background thread with a readable binary
            stream of everything the producer writes.
        compress: Gzip the bytes on the producer side before they reach the
            consumer.
        name: Thread name, handy in logs.
    """

    def __init__(
        self,
        consumer: Callable[[BinaryIO], None],
        *,
        compress: bool = False,
        name: str = "pipe-upload",
        max_chunks: int = _DEFAULT_MAX_CHUNKS,
    ) -> None:
        self._consumer = consumer
        self._conduit = _Conduit(max_chunks)
        writer = _ConduitWriter(self._conduit)
        self._source: BinaryIO = _GzipSink(fileobj=writer, mode="wb") if compress else writer  # type: ignore[assignment]
        self._reader = io.BufferedReader(_ConduitReader(self._conduit))
        self._error: Exception | None = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def source(self) -> BinaryIO:
        return self._source

    def get_source(self) -> BinaryIO:
        """Return the stream the producer writes to. The producer must close it."""
        return self._source

    def start(self) -> Pipe:
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            self._consumer(self._reader)
        except Exception as exc:  # noqa: BLE001 - reported from wait_for_completion
            self._error = exc
            self._conduit.broken.set()
            if self._conduit.aborted.is_set():
                logger.info("Background upload abandoned", extra={"upload_thread": self._thread.name})
            else:
                logger.error("Background upload failed", extra={"upload_thread": self._thread.name}, exc_info=True)
        else:
            # Consumer may return without draining; keep the producer from blocking.
            self._conduit.broken.set()

    def wait_for_completion(self, timeout: float | None = None) -> None:
        """
        Block until the consumer has finished.

        Call only after the producer has closed the source.

        Raises:
            UploadError: the consumer failed, or did not finish within ``timeout`` seconds.
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise UploadError(message="Upload did not complete in time", context={"timeout_s": timeout})
        if self._error is not None:
            if isinstance(self._error, UploadError):
                raise self._error
            raise UploadError(
                details=f"{type(self._error).__name__}: {self._error}",
                original_exception=self._error,
            ) from self._error

    def abort(self, timeout: float | None = None) -> None:
        """
        Abandon the upload from the producer side.

        The consumer sees an error instead of end of stream, so nothing is
        published. Closes the source and waits for the consumer to wind down.
        """
        self._conduit.aborted.set()
        with contextlib.suppress(UploadError):
            self._source.close()
        self._thread.join(timeout)

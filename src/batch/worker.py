"""
Worker poll loop.

Claims queued requests, streams each result into the cache through a
``Pipe`` and records the outcome. A handler gets the request and a writable
sink; it signals "retry later" by raising ``RetryRequestError``, and any
other exception fails the request so nothing is left stuck InProgress.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import BinaryIO

from batch.cache.base import CacheManager
from batch.exceptions import RetryRequestError
from batch.queue.base import QueueManager
from batch.request import BatchRequest
from core.logging import logger_batch as logger

Handler = Callable[[BatchRequest, BinaryIO], None]


class BatchWorker:
    def __init__(
        self,
        queue_manager: QueueManager,
        cache_manager: CacheManager,
        handler: Handler,
        *,
        poll_timeout_ms: int = 10000,
        suffix: str | None = None,
        compress: bool = False,
    ) -> None:
        self.queue_manager = queue_manager
        self.cache_manager = cache_manager
        self.handler = handler
        self.poll_timeout_ms = poll_timeout_ms
        self.suffix = suffix
        self.compress = compress

    def run_once(self, cancel: threading.Event | None = None) -> bool:
        """Process at most one request. Returns True if a request was claimed."""
        claim = self.queue_manager.poll_next(self.poll_timeout_ms, cancel)
        if claim.request is None:
            return False

        request = claim.request
        try:
            self._process(request)
        except RetryRequestError as exc:
            logger.info("Handler asked for retry", extra={"request_key": request.key, "reason": exc.message})
            self.queue_manager.abort_request(request.key)
        except Exception:
            logger.error("Request processing failed", extra={"request_key": request.key}, exc_info=True)
            self.queue_manager.fail_request(request.key)
        else:
            self.queue_manager.finish_request(request.key)
        return True

    def _process(self, request: BatchRequest) -> None:
        pipe = self.cache_manager.open_upload(request, self.suffix, compress=self.compress)
        sink = pipe.get_source()
        try:
            self.handler(request, sink)
        except BaseException:
            pipe.abort()
            raise
        sink.close()
        pipe.wait_for_completion()

    def run(self, stop: threading.Event) -> None:
        """Keep processing requests until ``stop`` is set."""
        logger.info("Worker started", extra={"poll_timeout_ms": self.poll_timeout_ms})
        while not stop.is_set():
            self.run_once(cancel=stop)
        logger.info("Worker stopped")

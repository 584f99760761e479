"""
Request manager: the caller-facing coordinator.

Combines the queue and the result cache. The cache is always consulted
first, because a result that survived the loss of its queue record is still
a valid answer. When the queue reports a completed request that the cache
cannot see, the result is treated as lost (and requeued on submit) or, for
full status queries, given a few chances to become visible first.
"""

from __future__ import annotations

import time

from batch.cache.base import CacheManager
from batch.queue.base import QueueManager
from batch.queue.entry import current_millis
from batch.request import BatchRequest
from batch.schemas.status import BatchStatus, StatusFlag
from core.logging import logger_batch as logger


class RequestManager:
    def __init__(
        self,
        queue_manager: QueueManager,
        cache_manager: CacheManager,
        *,
        visibility_retries: int = 3,
        visibility_retry_delay_ms: int = 250,
    ) -> None:
        self._queue = queue_manager
        self._cache = cache_manager
        self.visibility_retries = visibility_retries
        self.visibility_retry_delay_ms = visibility_retry_delay_ms

    @property
    def queue_manager(self) -> QueueManager:
        return self._queue

    @property
    def cache_manager(self) -> CacheManager:
        return self._cache

    def _completed(self, key: str) -> BatchStatus:
        return BatchStatus(key=key, status=StatusFlag.COMPLETED, url=self._cache.get_result_url(key))

    def submit(self, request: BatchRequest) -> BatchStatus:
        """
        Submit a request for processing.

        A cached result is returned straight away. Otherwise the request is
        queued, or the status of an identical queued request is returned.
        """
        key = request.key
        if self._cache.is_ready(key):
            return self._completed(key)

        status = self._queue.submit(request)
        if status.status is StatusFlag.COMPLETED:
            if self._cache.is_ready(key):
                return self._completed(key)
            logger.warning("Completed result missing from cache, resubmitting", extra={"request_key": key})
            status = self._queue.resubmit(request)
        return status

    def get_status(self, key: str) -> BatchStatus:
        """Cheap status check with no queue scan or ETA."""
        if self._cache.is_ready(key):
            return self._completed(key)
        status = self._queue.get_status(key)
        if status.status is StatusFlag.COMPLETED:
            # Supposed to have been completed but not in cache, assume the answer has been lost
            return BatchStatus(key=key, status=StatusFlag.UNKNOWN)
        return status

    def get_full_status(self, key: str) -> BatchStatus:
        """Status including queue position and ETA where those can be estimated."""
        if self._cache.is_ready(key):
            return self._completed(key)

        status = self._queue.get_status(key)
        if status.status is StatusFlag.PENDING:
            self._estimate_pending(status)
        elif status.status is StatusFlag.IN_PROGRESS:
            status.position_in_queue = 0
            if status.started is not None and status.estimated_time is not None:
                elapsed = current_millis() - status.started
                status.eta = max(0, status.estimated_time - elapsed)
        elif status.status is StatusFlag.COMPLETED:
            return self._await_visibility(key)
        return status

    def _estimate_pending(self, status: BatchStatus) -> None:
        # Requests without an estimate add nothing to the running total
        eta = 0
        for position, queued in enumerate(self._queue.get_queue(), start=1):
            eta += queued.estimated_time or 0
            if queued.key == status.key:
                status.position_in_queue = position
                status.eta = eta
                return

    def _await_visibility(self, key: str) -> BatchStatus:
        """Give an eventually-consistent store a few chances to show a completed result."""
        for _ in range(self.visibility_retries):
            time.sleep(self.visibility_retry_delay_ms / 1000.0)
            if self._cache.is_ready(key):
                return self._completed(key)
        logger.warning("Completed result never became visible in cache", extra={"request_key": key})
        return BatchStatus(key=key, status=StatusFlag.UNKNOWN)

    def get_queue(self) -> list[BatchStatus]:
        return self._queue.get_queue()

    def find_request(self, key: str) -> BatchRequest | None:
        return self._queue.find_request(key)

"""
Queue manager contract, state machine and claim protocol.

Entries move ``Pending -> InProgress -> {Completed, Failed}``, with
``InProgress -> Pending`` when a worker aborts. Active entries (Pending,
InProgress) and the completed ledger (Completed, Failed) are separate
collections; finishing an entry moves it across exactly once.

All of that logic lives here. A backend only supplies storage primitives,
the important ones being a conditional create and a compare-and-swap on the
entry ``version``, so that several processes polling the same store never
both claim one entry.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from batch.exceptions import QueueContentionError
from batch.queue.entry import QueueEntry, current_millis
from batch.request import BatchRequest
from batch.schemas.status import BatchStatus, StatusFlag
from core.logging import logger_batch as logger

DEFAULT_CHECK_INTERVAL_MS = 1000
DEFAULT_CLEANUP_BATCH_SIZE = 20
DEFAULT_MAX_CAS_ATTEMPTS = 10


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ClaimResult:
    outcome: ClaimOutcome
    request: BatchRequest | None = None

    @property
    def claimed(self) -> bool:
        return self.outcome is ClaimOutcome.CLAIMED

    @property
    def cancelled(self) -> bool:
        return self.outcome is ClaimOutcome.CANCELLED


class QueueManager(ABC):
    """
    A queue of (possibly long-running) batch requests plus a ledger of finished ones.

    Backends may be distributed, in which case several QueueManager
    instances on different hosts share one queue.
    """

    def __init__(
        self,
        *,
        check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS,
        cleanup_batch_size: int = DEFAULT_CLEANUP_BATCH_SIZE,
        max_cas_attempts: int = DEFAULT_MAX_CAS_ATTEMPTS,
    ) -> None:
        self.check_interval_ms = check_interval_ms
        self.cleanup_batch_size = cleanup_batch_size
        self.max_cas_attempts = max_cas_attempts

    # ------------------------------------------------------------------
    # Storage primitives supplied by backends
    # ------------------------------------------------------------------

    @abstractmethod
    def _get_active(self, key: str) -> QueueEntry | None:
        pass

    @abstractmethod
    def _get_completed(self, key: str) -> QueueEntry | None:
        pass

    @abstractmethod
    def _scan_active(self) -> list[QueueEntry]:
        """All active entries in arrival order."""

    @abstractmethod
    def _create_active(self, entry: QueueEntry) -> bool:
        """Store a new active entry unless one already exists for the key."""

    @abstractmethod
    def _replace_active(self, entry: QueueEntry, expected_version: int) -> bool:
        """Overwrite the active entry only if the stored copy is still at ``expected_version``."""

    @abstractmethod
    def _move_to_ledger(self, entry: QueueEntry, expected_version: int) -> bool:
        """Atomically remove the active entry (if still at ``expected_version``) and record ``entry`` in the ledger."""

    @abstractmethod
    def _delete_completed(self, key: str) -> None:
        pass

    @abstractmethod
    def _list_completed_before(self, status: StatusFlag, cutoff_ms: int, limit: int) -> list[str]:
        """Keys of ledger entries with ``status`` that finished strictly before ``cutoff_ms``."""

    @abstractmethod
    def _delete_completed_batch(self, keys: list[str]) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every active and ledger entry."""

    # ------------------------------------------------------------------
    # Caller surface
    # ------------------------------------------------------------------

    def _find(self, key: str) -> QueueEntry | None:
        entry = self._get_active(key)
        if entry is None:
            entry = self._get_completed(key)
        return entry

    def submit(self, request: BatchRequest) -> BatchStatus:
        """
        Queue a request unless a live entry for the same key already exists.

        An existing Pending, InProgress or Completed entry is returned as is.
        A Failed one is discarded and the request queued afresh.
        """
        key = request.key
        for _ in range(self.max_cas_attempts):
            entry = self._find(key)
            if entry is not None and entry.status is not StatusFlag.FAILED:
                return entry.to_status()
            if entry is not None:
                logger.info("Requeueing previously failed request", extra={"request_key": key})
                self._delete_completed(key)

            fresh = QueueEntry.from_request(request)
            if self._create_active(fresh):
                logger.info("Request queued", extra={"request_key": key})
                return fresh.to_status()
            # Lost a race with a concurrent submit; the winner's entry is visible on the next pass
            logger.debug("Concurrent submit detected", extra={"request_key": key})

        raise QueueContentionError(context={"request_key": key, "operation": "submit"})

    def resubmit(self, request: BatchRequest) -> BatchStatus:
        """Forget any ledger record for the request and submit it again."""
        self._delete_completed(request.key)
        return self.submit(request)

    def get_status(self, key: str) -> BatchStatus:
        """Cheap point lookup; does not scan the queue or estimate ETA."""
        entry = self._find(key)
        if entry is None:
            return BatchStatus(key=key, status=StatusFlag.UNKNOWN)
        return entry.to_status()

    def get_queue(self) -> list[BatchStatus]:
        return [entry.to_status() for entry in self._scan_active()]

    def find_request(self, key: str) -> BatchRequest | None:
        entry = self._find(key)
        return None if entry is None else entry.to_request()

    # ------------------------------------------------------------------
    # Worker surface
    # ------------------------------------------------------------------

    def _claim_next(self) -> BatchRequest | None:
        for entry in self._scan_active():
            if entry.status is not StatusFlag.PENDING:
                continue
            if self._replace_active(entry.started(current_millis()), expected_version=entry.version):
                logger.info("Request claimed", extra={"request_key": entry.key})
                return entry.to_request()
            logger.debug("Lost claim race, skipping entry", extra={"request_key": entry.key})
        return None

    def poll_next(self, timeout_ms: int, cancel: threading.Event | None = None) -> ClaimResult:
        """
        Claim the oldest pending request, waiting up to ``timeout_ms`` for one to arrive.

        Setting ``cancel`` ends the wait early with a CANCELLED result.
        """
        request = self._claim_next()
        deadline = time.monotonic() + timeout_ms / 1000.0
        while request is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return ClaimResult(ClaimOutcome.TIMED_OUT)
            pause = min(self.check_interval_ms / 1000.0, remaining)
            if cancel is not None:
                if cancel.wait(pause):
                    return ClaimResult(ClaimOutcome.CANCELLED)
            else:
                time.sleep(pause)
            request = self._claim_next()
        return ClaimResult(ClaimOutcome.CLAIMED, request)

    def next_request(self, timeout_ms: int, cancel: threading.Event | None = None) -> BatchRequest | None:
        """Claim the next request, or None if nothing arrived before the timeout (or the wait was cancelled)."""
        return self.poll_next(timeout_ms, cancel).request

    def finish_request(self, key: str) -> None:
        """Mark a request as completed, moving it out of the queue into the ledger."""
        self._finish(key, StatusFlag.COMPLETED)

    def fail_request(self, key: str) -> None:
        """Mark a request as one that cannot be completed."""
        self._finish(key, StatusFlag.FAILED)

    def _finish(self, key: str, status: StatusFlag) -> None:
        for _ in range(self.max_cas_attempts):
            entry = self._get_active(key)
            if entry is None:
                logger.error(
                    "Request has been lost, can't mark as %s", status.value, extra={"request_key": key}
                )
                return
            if self._move_to_ledger(entry.finished(status, current_millis()), expected_version=entry.version):
                logger.info("Request finished", extra={"request_key": key, "status": status.value})
                return
        raise QueueContentionError(context={"request_key": key, "operation": status.value})

    def abort_request(self, key: str) -> None:
        """Hand an in-progress request back to the pending queue so another worker can retry it."""
        for _ in range(self.max_cas_attempts):
            entry = self._get_active(key)
            if entry is None:
                logger.error("Request has been lost, can't abort", extra={"request_key": key})
                return
            if entry.status is not StatusFlag.IN_PROGRESS:
                logger.warning(
                    "Abort ignored, request is not in progress",
                    extra={"request_key": key, "status": entry.status.value},
                )
                return
            if self._replace_active(entry.reset(), expected_version=entry.version):
                logger.info("Request returned to queue", extra={"request_key": key})
                return
        raise QueueContentionError(context={"request_key": key, "operation": "abort"})

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def remove_old_completed_requests(self, cutoff_ms: int) -> int:
        """
        Delete Completed ledger records that finished before ``cutoff_ms``.

        Failed records are kept for diagnosis. Returns the number deleted.
        """
        count = 0
        while True:
            keys = self._list_completed_before(StatusFlag.COMPLETED, cutoff_ms, self.cleanup_batch_size)
            if not keys:
                break
            self._delete_completed_batch(keys)
            count += len(keys)
        logger.info("Cleanup deleted old records of completed requests", extra={"deleted": count})
        return count

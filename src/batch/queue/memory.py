"""
In-process queue backend.

Non-persistent and non-distributed, so only useful for tests, development
and single-process deployments. One lock guards both collections; no
operation sleeps or does I/O while holding it.
"""

from __future__ import annotations

from threading import Lock

from batch.queue.base import QueueManager
from batch.queue.entry import QueueEntry
from batch.schemas.status import StatusFlag


class MemQueueManager(QueueManager):
    def __init__(self, **kwargs: int) -> None:
        super().__init__(**kwargs)
        # dicts keep insertion order, which is arrival order for the active set
        self._queue: dict[str, QueueEntry] = {}
        self._completed: dict[str, QueueEntry] = {}
        self._lock = Lock()

    def _get_active(self, key: str) -> QueueEntry | None:
        with self._lock:
            return self._queue.get(key)

    def _get_completed(self, key: str) -> QueueEntry | None:
        with self._lock:
            return self._completed.get(key)

    def _scan_active(self) -> list[QueueEntry]:
        with self._lock:
            return list(self._queue.values())

    def _create_active(self, entry: QueueEntry) -> bool:
        with self._lock:
            if entry.key in self._queue:
                return False
            self._queue[entry.key] = entry
            return True

    def _replace_active(self, entry: QueueEntry, expected_version: int) -> bool:
        with self._lock:
            current = self._queue.get(entry.key)
            if current is None or current.version != expected_version:
                return False
            self._queue[entry.key] = entry
            return True

    def _move_to_ledger(self, entry: QueueEntry, expected_version: int) -> bool:
        with self._lock:
            current = self._queue.get(entry.key)
            if current is None or current.version != expected_version:
                return False
            del self._queue[entry.key]
            self._completed[entry.key] = entry
            return True

    def _delete_completed(self, key: str) -> None:
        with self._lock:
            self._completed.pop(key, None)

    def _list_completed_before(self, status: StatusFlag, cutoff_ms: int, limit: int) -> list[str]:
        with self._lock:
            matches = sorted(
                (
                    entry
                    for entry in self._completed.values()
                    if entry.status is status and entry.finished_at is not None and entry.finished_at < cutoff_ms
                ),
                key=lambda entry: entry.finished_at or 0,
            )
            return [entry.key for entry in matches[:limit]]

    def _delete_completed_batch(self, keys: list[str]) -> None:
        with self._lock:
            for key in keys:
                self._completed.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()
            self._completed.clear()

"""
Redis queue backend for queues shared between hosts.

Layout (all keys carry the configured prefix):

- ``queue:{key}``               JSON active entry
- ``queue_index``               sorted set of active keys scored by arrival sequence
- ``queue_seq``                 arrival counter
- ``completed:{key}``           JSON ledger entry
- ``completed_index:{status}``  sorted set of ledger keys scored by finish time

Conditional writes use WATCH/MULTI/EXEC: the transaction is discarded if the
watched entry changed after it was read, which gives the compare-and-swap
the claim protocol relies on.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import redis
from redis.exceptions import RedisError, WatchError

from batch.exceptions import QueueBackendError
from batch.queue.base import QueueManager
from batch.queue.entry import QueueEntry
from batch.schemas.status import StatusFlag
from core.logging import logger_batch as logger

_LEDGER_STATUSES = (StatusFlag.COMPLETED, StatusFlag.FAILED)


def _dumps(entry: QueueEntry) -> str:
    return json.dumps(entry.to_dict(), separators=(",", ":"))


def _loads(raw: str | None) -> QueueEntry | None:
    if raw is None:
        return None
    return QueueEntry.from_dict(json.loads(raw))


@contextmanager
def _backend_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        logger.error("Redis queue operation failed", extra={"operation": operation, "error": str(exc)})
        raise QueueBackendError(
            details=f"{type(exc).__name__}: {exc}",
            context={"backend": "redis", "operation": operation},
            original_exception=exc,
        ) from exc


class RedisQueueManager(QueueManager):
    """Distributed queue backend on a single Redis instance."""

    def __init__(
        self,
        redis_client: Any | None = None,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "",
        **kwargs: int,
    ) -> None:
        super().__init__(**kwargs)
        if redis_client is None:
            redis_client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.client = redis_client
        self.key_prefix = key_prefix

    def _active_key(self, key: str) -> str:
        return f"{self.key_prefix}queue:{key}"

    def _completed_key(self, key: str) -> str:
        return f"{self.key_prefix}completed:{key}"

    def _completed_index(self, status: StatusFlag) -> str:
        return f"{self.key_prefix}completed_index:{status.value}"

    @property
    def _queue_index(self) -> str:
        return f"{self.key_prefix}queue_index"

    @property
    def _queue_seq(self) -> str:
        return f"{self.key_prefix}queue_seq"

    def _get_active(self, key: str) -> QueueEntry | None:
        with _backend_errors("get"):
            return _loads(self.client.get(self._active_key(key)))

    def _get_completed(self, key: str) -> QueueEntry | None:
        with _backend_errors("get_completed"):
            return _loads(self.client.get(self._completed_key(key)))

    def _scan_active(self) -> list[QueueEntry]:
        with _backend_errors("scan"):
            keys = self.client.zrange(self._queue_index, 0, -1)
            if not keys:
                return []
            raws = self.client.mget([self._active_key(key) for key in keys])
        entries = []
        for raw in raws:
            entry = _loads(raw)
            if entry is not None:
                entries.append(entry)
        return entries

    def _create_active(self, entry: QueueEntry) -> bool:
        active_key = self._active_key(entry.key)
        with _backend_errors("create"), self.client.pipeline() as pipe:
            try:
                pipe.watch(active_key)
                if pipe.exists(active_key):
                    return False
                seq = pipe.incr(self._queue_seq)
                pipe.multi()
                pipe.set(active_key, _dumps(entry))
                pipe.zadd(self._queue_index, {entry.key: seq})
                pipe.execute()
                return True
            except WatchError:
                return False

    def _watch_version(self, pipe: Any, key: str, expected_version: int) -> bool:
        """WATCH the active entry and report whether it is still at ``expected_version``."""
        active_key = self._active_key(key)
        pipe.watch(active_key)
        current = _loads(pipe.get(active_key))
        return current is not None and current.version == expected_version

    def _replace_active(self, entry: QueueEntry, expected_version: int) -> bool:
        with _backend_errors("replace"), self.client.pipeline() as pipe:
            try:
                if not self._watch_version(pipe, entry.key, expected_version):
                    return False
                pipe.multi()
                pipe.set(self._active_key(entry.key), _dumps(entry))
                pipe.execute()
                return True
            except WatchError:
                return False

    def _move_to_ledger(self, entry: QueueEntry, expected_version: int) -> bool:
        with _backend_errors("move_to_ledger"), self.client.pipeline() as pipe:
            try:
                if not self._watch_version(pipe, entry.key, expected_version):
                    return False
                pipe.multi()
                pipe.delete(self._active_key(entry.key))
                pipe.zrem(self._queue_index, entry.key)
                pipe.set(self._completed_key(entry.key), _dumps(entry))
                pipe.zadd(self._completed_index(entry.status), {entry.key: entry.finished_at or 0})
                pipe.execute()
                return True
            except WatchError:
                return False

    def _delete_completed(self, key: str) -> None:
        self._delete_completed_batch([key])

    def _list_completed_before(self, status: StatusFlag, cutoff_ms: int, limit: int) -> list[str]:
        with _backend_errors("list_completed"):
            return list(
                self.client.zrangebyscore(self._completed_index(status), "-inf", f"({cutoff_ms}", start=0, num=limit)
            )

    def _delete_completed_batch(self, keys: list[str]) -> None:
        if not keys:
            return
        with _backend_errors("delete_completed"), self.client.pipeline() as pipe:
            pipe.delete(*[self._completed_key(key) for key in keys])
            for status in _LEDGER_STATUSES:
                pipe.zrem(self._completed_index(status), *keys)
            pipe.execute()

    def clear(self) -> None:
        with _backend_errors("clear"):
            keys: list[str] = [self._queue_index, self._queue_seq]
            keys.extend(self._completed_index(status) for status in _LEDGER_STATUSES)
            for pattern in (self._active_key("*"), self._completed_key("*")):
                keys.extend(self.client.scan_iter(match=pattern))
            self.client.delete(*keys)

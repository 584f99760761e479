from __future__ import annotations

from threading import Lock
from typing import Final

from batch.cache.base import CacheManager
from batch.manager import RequestManager
from batch.queue.base import QueueManager
from core.exceptions import ValidationError
from core.logging import logger_batch as logger
from core.settings import get_settings

_manager: RequestManager | None = None
_LOCK: Final[Lock] = Lock()


def _create_queue_manager_from_settings() -> QueueManager:
    """
    Build the queue backend named by QUEUE_BACKEND. Concrete backends are
    imported locally so the redis client is only loaded when it's used.
    """
    s = get_settings()
    backend = (s.QUEUE_BACKEND or "").lower()
    options = {
        "check_interval_ms": s.QUEUE_CHECK_INTERVAL_MS,
        "cleanup_batch_size": s.QUEUE_CLEANUP_BATCH_SIZE,
        "max_cas_attempts": s.QUEUE_MAX_CAS_ATTEMPTS,
    }

    if backend == "redis":
        logger.info("Queue backend selected: redis", extra={"key_prefix": s.REDIS_KEY_PREFIX})
        from batch.queue.redis import RedisQueueManager

        return RedisQueueManager(redis_url=s.REDIS_URL, key_prefix=s.REDIS_KEY_PREFIX, **options)

    if backend in {"memory", "mem", ""}:
        logger.info("Queue backend selected: in-memory")
        from batch.queue.memory import MemQueueManager

        return MemQueueManager(**options)

    raise ValidationError(message=f"Unknown queue backend: {s.QUEUE_BACKEND}", context={"setting": "QUEUE_BACKEND"})


def _create_cache_manager_from_settings() -> CacheManager:
    s = get_settings()
    backend = (s.CACHE_BACKEND or "").lower()

    if backend in {"file", ""}:
        logger.info("Cache backend selected: file", extra={"cache_dir": s.CACHE_DIR})
        from batch.cache.file import FileCacheManager

        return FileCacheManager(s.CACHE_DIR, url_prefix=s.CACHE_URL_PREFIX, default_suffix=s.CACHE_DEFAULT_SUFFIX)

    raise ValidationError(message=f"Unknown cache backend: {s.CACHE_BACKEND}", context={"setting": "CACHE_BACKEND"})


def _create_request_manager_from_settings() -> RequestManager:
    s = get_settings()
    return RequestManager(
        _create_queue_manager_from_settings(),
        _create_cache_manager_from_settings(),
        visibility_retries=s.STATUS_VISIBILITY_RETRIES,
        visibility_retry_delay_ms=s.STATUS_VISIBILITY_RETRY_DELAY_MS,
    )


def get_request_manager() -> RequestManager:
    """
    Thread-safe, lazily-initialized singleton.
    Returns the same object for all callers (per *process*).
    """
    global _manager

    if _manager is None:
        # First check without lock (fast path), then double-check inside lock.
        with _LOCK:
            if _manager is None:
                _manager = _create_request_manager_from_settings()
    return _manager


def reset_request_manager() -> None:
    """
    Recreate the singleton from current settings.
    Call during a quiet window; in-memory queue contents are discarded.
    """
    global _manager
    with _LOCK:
        _manager = _create_request_manager_from_settings()


def set_request_manager(manager: RequestManager | None) -> None:
    """
    Test helper: inject a manager built around fake or in-memory backends.
    """
    global _manager
    with _LOCK:
        _manager = manager

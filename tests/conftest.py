"""
Pytest configuration and shared fixtures for batch-queue tests.

This file provides:
- Marker registration
- In-memory queue, file cache and request manager fixtures
- A FastAPI test client wired to those fixtures
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

# Keep imported settings away from a developer's .env and real Redis
os.environ.setdefault("QUEUE_BACKEND", "memory")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "queue: Queue manager tests")
    config.addinivalue_line("markers", "cache: Result cache tests")
    config.addinivalue_line("markers", "api: HTTP layer tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


# =============================================================================
# Request Fixtures
# =============================================================================


@pytest.fixture
def make_request():
    """Factory for BatchRequest objects with a short default estimate."""
    from batch.request import BatchRequest

    def _make(
        uri: str = "/service/report",
        parameters: dict[str, list[str | None]] | None = None,
        *,
        estimated_duration: int | None = 50,
        sticky: bool = False,
        key: str | None = None,
    ) -> BatchRequest:
        return BatchRequest(
            uri,
            parameters or {},
            sticky=sticky,
            estimated_duration=estimated_duration,
            key=key,
        )

    return _make


# =============================================================================
# Backend Fixtures
# =============================================================================


@pytest.fixture
def queue_manager():
    """In-memory queue that polls every few milliseconds."""
    from batch.queue.memory import MemQueueManager

    return MemQueueManager(check_interval_ms=5, cleanup_batch_size=2)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def cache_manager(cache_dir: Path):
    from batch.cache.file import FileCacheManager

    return FileCacheManager(cache_dir, url_prefix="http://localhost/service/report/")


@pytest.fixture
def request_manager(queue_manager, cache_manager):
    from batch.manager import RequestManager

    return RequestManager(queue_manager, cache_manager, visibility_retries=2, visibility_retry_delay_ms=1)


# =============================================================================
# FastAPI Test Clients
# =============================================================================


@pytest.fixture
def api_client(request_manager) -> Iterator[TestClient]:
    """Test client for the batch queue service backed by the in-memory fixtures."""
    from batch import factory
    from batch.app import app

    factory.set_request_manager(request_manager)
    try:
        with TestClient(app) as client:
            yield client
    finally:
        factory.set_request_manager(None)

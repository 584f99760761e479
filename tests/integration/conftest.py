"""
Pytest configuration and shared fixtures for integration tests.

This file provides:
- A Redis-backed queue manager, run against an in-process fakeredis server and,
  when REDIS_URL points at a reachable server, against that server too
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import fakeredis
import pytest
import redis
from redis.exceptions import RedisError

from batch.queue.redis import RedisQueueManager


def _live_client() -> redis.Redis:
    url = os.environ.get("REDIS_URL")
    if not url:
        pytest.skip("REDIS_URL not set")

    client = redis.Redis.from_url(url, decode_responses=True)
    try:
        client.ping()
    except RedisError as exc:
        pytest.skip(f"Redis not reachable at {url}: {exc}")
    return client


@pytest.fixture(params=["fakeredis", "live"])
def redis_client(request: pytest.FixtureRequest) -> Iterator[redis.Redis]:
    """A decoded-response Redis client; fakeredis always, a live server when configured."""
    if request.param == "fakeredis":
        client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    else:
        client = _live_client()
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def redis_queue_manager(redis_client: redis.Redis) -> Iterator[RedisQueueManager]:
    """RedisQueueManager on a unique key prefix, cleared after the test."""
    manager = RedisQueueManager(
        redis_client=redis_client,
        key_prefix=f"test-{uuid.uuid4().hex[:8]}:",
        check_interval_ms=5,
        cleanup_batch_size=2,
    )
    try:
        yield manager
    finally:
        manager.clear()

"""Unit tests for core settings module."""

from __future__ import annotations

import pytest

from core.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def isolate_settings():
    """Isolate each test by clearing Settings cache."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.unit
def test_settings_defaults() -> None:
    """Check field defaults on the model itself, independent of the test environment."""
    assert Settings.model_fields["PROJECT_NAME"].default == "Batch Request Queue"
    assert Settings.model_fields["API_V1_STR"].default == ""
    assert Settings.model_fields["ENV"].default == "dev"
    assert Settings.model_fields["LOG_LEVEL"].default == "INFO"
    assert Settings.model_fields["LOG_NAME"].default == "batch.queue"
    assert Settings.model_fields["DEBUG"].default is False
    assert Settings.model_fields["PORT"].default == 5010
    assert Settings.model_fields["CORS_ORIGINS"].default == ""


@pytest.mark.unit
def test_settings_queue_defaults() -> None:
    assert Settings.model_fields["QUEUE_BACKEND"].default == "memory"
    assert Settings.model_fields["QUEUE_CHECK_INTERVAL_MS"].default == 1000
    assert Settings.model_fields["QUEUE_CLEANUP_BATCH_SIZE"].default == 20
    assert Settings.model_fields["QUEUE_MAX_CAS_ATTEMPTS"].default == 10
    assert Settings.model_fields["REDIS_URL"].default == "redis://localhost:6379/0"
    assert Settings.model_fields["REDIS_KEY_PREFIX"].default == ""


@pytest.mark.unit
def test_settings_cache_and_request_defaults() -> None:
    assert Settings.model_fields["CACHE_BACKEND"].default == "file"
    assert Settings.model_fields["CACHE_DIR"].default == "./cache"
    assert Settings.model_fields["CACHE_DEFAULT_SUFFIX"].default == "csv"
    assert Settings.model_fields["DEFAULT_ESTIMATED_DURATION_MS"].default == 60000
    assert Settings.model_fields["STATUS_VISIBILITY_RETRIES"].default == 3
    assert Settings.model_fields["STATUS_VISIBILITY_RETRY_DELAY_MS"].default == 250
    assert Settings.model_fields["COMPLETED_RETENTION_HOURS"].default == 168
    assert Settings.model_fields["CLEANUP_INTERVAL_SECONDS"].default == 3600


@pytest.mark.unit
def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_BACKEND", "redis")
    monkeypatch.setenv("REDIS_KEY_PREFIX", "prod:")
    monkeypatch.setenv("QUEUE_CHECK_INTERVAL_MS", "250")

    settings = get_settings()

    assert settings.QUEUE_BACKEND == "redis"
    assert settings.REDIS_KEY_PREFIX == "prod:"
    assert settings.QUEUE_CHECK_INTERVAL_MS == 250


@pytest.mark.unit
def test_settings_case_insensitive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("cache_default_suffix", "json")

    assert get_settings().CACHE_DEFAULT_SUFFIX == "json"


@pytest.mark.unit
def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()

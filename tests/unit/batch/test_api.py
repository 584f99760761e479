"""Unit tests for the batch request HTTP endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from batch.exceptions import QueueBackendError

pytestmark = [pytest.mark.unit, pytest.mark.api]


def _submit(client: TestClient, **body) -> dict:
    payload = {"request_uri": "/service/report", "parameters": {"year": ["2024"]}, **body}
    response = client.post("/requests", json=payload)
    assert response.status_code == 200
    return response.json()


def test_health(api_client: TestClient) -> None:
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_submit_returns_pending_status(api_client: TestClient) -> None:
    data = _submit(api_client, estimated_duration=500)

    assert data == {
        "key": "%2Fservice%2Freport_year_2024",
        "status": "Pending",
        "estimatedTime": 500,
    }


def test_submit_without_estimate_uses_default(api_client: TestClient) -> None:
    assert _submit(api_client)["estimatedTime"] == 60000


def test_submit_with_explicit_key(api_client: TestClient) -> None:
    assert _submit(api_client, key="annual-2024")["key"] == "annual-2024"


def test_submit_rejects_illegal_key(api_client: TestClient) -> None:
    response = api_client.post("/requests", json={"request_uri": "/r", "key": "k" * 201})

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "INVALID_REQUEST_KEY"


def test_submit_rejects_empty_key(api_client: TestClient) -> None:
    response = api_client.post("/requests", json={"request_uri": "/r", "key": ""})

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "INVALID_REQUEST_KEY"


def test_submit_rejects_negative_estimate(api_client: TestClient) -> None:
    response = api_client.post("/requests", json={"request_uri": "/r", "estimated_duration": -1})

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "REQUEST_VALIDATION_ERROR"


def test_status_endpoints(api_client: TestClient) -> None:
    first = _submit(api_client, estimated_duration=100)["key"]
    second = _submit(api_client, request_uri="/other", estimated_duration=50)["key"]
    assert second == "%2Fother_year_2024"

    assert api_client.get("/requests/status", params={"key": second}).json() == {
        "key": second,
        "status": "Pending",
        "estimatedTime": 50,
    }
    full = api_client.get("/requests/full-status", params={"key": second}).json()
    assert full["positionInQueue"] == 2
    assert full["eta"] == 150
    assert [s["key"] for s in api_client.get("/queue").json()] == [first, second]


def test_unknown_key_status(api_client: TestClient) -> None:
    response = api_client.get("/requests/full-status", params={"key": "missing"})

    assert response.json() == {"key": "missing", "status": "Unknown"}


def test_describe_request(api_client: TestClient) -> None:
    key = _submit(api_client, parameters={"flag": [None], "year": ["2024"]}, sticky=True)["key"]

    data = api_client.get("/requests/describe", params={"key": key}).json()

    assert data["request_uri"] == "/service/report"
    assert data["parameters"] == {"flag": [None], "year": ["2024"]}
    assert data["sticky"] is True


def test_describe_unknown_request_is_404(api_client: TestClient) -> None:
    response = api_client.get("/requests/describe", params={"key": "missing"})

    assert response.status_code == 404
    assert response.json()["error"]["error_code"] == "REQUEST_NOT_FOUND"


def test_completed_request_is_downloadable(api_client: TestClient, request_manager) -> None:
    key = _submit(api_client)["key"]
    queue = request_manager.queue_manager
    claimed = queue.next_request(0)
    request_manager.cache_manager.upload(claimed, b"year,total\n2024,7\n")
    queue.finish_request(key)

    status = api_client.get("/requests/full-status", params={"key": key}).json()
    assert status["status"] == "Completed"
    assert status["url"] == f"http://localhost/service/report/{key}.csv"

    response = api_client.get("/results", params={"key": key})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.content == b"year,total\n2024,7\n"


def test_result_not_ready_is_404(api_client: TestClient) -> None:
    key = _submit(api_client)["key"]

    response = api_client.get("/results", params={"key": key})

    assert response.status_code == 404


def test_backend_failure_maps_to_503(api_client: TestClient, request_manager, monkeypatch) -> None:
    def broken(key: str):
        raise QueueBackendError(details="connection refused")

    monkeypatch.setattr(request_manager.queue_manager, "get_status", broken)

    response = api_client.get("/requests/status", params={"key": "anything"})

    assert response.status_code == 503
    assert response.json()["error"]["error_code"] == "QUEUE_BACKEND_ERROR"


def test_escaped_key_survives_request_routing(api_client: TestClient) -> None:
    key = _submit(api_client, request_uri="/service/report/annual")["key"]
    assert key == "%2Fservice%2Freport%2Fannual_year_2024"

    for path in ("/requests/status", "/requests/full-status", "/requests/describe"):
        response = api_client.get(path, params={"key": key})
        assert response.status_code == 200, path
    assert api_client.get("/requests/status", params={"key": key}).json()["key"] == key


@pytest.mark.parametrize("path", ["/requests/status", "/requests/full-status", "/requests/describe", "/results"])
def test_key_is_required(api_client: TestClient, path: str) -> None:
    response = api_client.get(path)

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "REQUEST_VALIDATION_ERROR"


def test_empty_key_is_rejected(api_client: TestClient) -> None:
    response = api_client.get("/requests/status", params={"key": ""})

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "INVALID_REQUEST_KEY"

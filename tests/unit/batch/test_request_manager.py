"""Unit tests for RequestManager reconciliation of queue and cache."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest

from batch.queue.entry import current_millis
from batch.schemas.status import BatchStatus, StatusFlag

pytestmark = [pytest.mark.unit, pytest.mark.queue, pytest.mark.cache]


def _check_queue(request_manager, *expected: tuple[str, StatusFlag]) -> None:
    assert [(s.key, s.status) for s in request_manager.get_queue()] == list(expected)


def test_request_lifecycle(request_manager, queue_manager, cache_manager, make_request) -> None:
    assert queue_manager.next_request(12) is None

    req1 = make_request("/test1", {"p": ["foo"], "q": ["bar"]}, estimated_duration=100)
    assert request_manager.find_request(req1.key) is None
    assert request_manager.get_status(req1.key).status is StatusFlag.UNKNOWN

    assert request_manager.submit(req1).status is StatusFlag.PENDING
    assert request_manager.get_status(req1.key).status is StatusFlag.PENDING

    # Parameter order doesn't change the key
    found = request_manager.find_request(make_request("/test1", {"q": ["bar"], "p": ["foo"]}, sticky=True).key)
    assert found.request_uri == req1.request_uri
    assert found.parameters == req1.parameters

    req2 = make_request("/test2", {"p": ["foo"]}, estimated_duration=50)
    request_manager.submit(req2)
    s2 = request_manager.get_full_status(req2.key)
    assert s2.status is StatusFlag.PENDING
    assert s2.eta == 150
    assert s2.position_in_queue == 2

    _check_queue(request_manager, (req1.key, StatusFlag.PENDING), (req2.key, StatusFlag.PENDING))
    assert not cache_manager.is_ready(req1.key)
    assert not cache_manager.is_ready(req2.key)

    start1 = current_millis()
    claimed = queue_manager.next_request(12)
    start2 = current_millis()
    assert claimed.request_uri == req1.request_uri
    _check_queue(request_manager, (req1.key, StatusFlag.IN_PROGRESS), (req2.key, StatusFlag.PENDING))
    started = request_manager.get_status(req1.key).started
    assert started is not None and start1 <= started <= start2

    queue_manager.abort_request(claimed.key)
    _check_queue(request_manager, (req1.key, StatusFlag.PENDING), (req2.key, StatusFlag.PENDING))
    claimed = queue_manager.next_request(12)
    assert claimed.request_uri == req1.request_uri
    _check_queue(request_manager, (req1.key, StatusFlag.IN_PROGRESS), (req2.key, StatusFlag.PENDING))

    cache_manager.upload(claimed, b"Test1 result")
    queue_manager.finish_request(claimed.key)
    _check_queue(request_manager, (req2.key, StatusFlag.PENDING))
    s2 = request_manager.get_full_status(req2.key)
    assert s2.eta == 50
    assert s2.position_in_queue == 1
    assert request_manager.get_status(req1.key).status is StatusFlag.COMPLETED

    assert cache_manager.is_ready(req1.key)
    with cache_manager.read_result(req1.key) as stream:
        assert stream.read() == b"Test1 result"

    claimed = queue_manager.next_request(12)
    s2 = request_manager.get_full_status(req2.key)
    assert s2.position_in_queue == 0
    assert s2.status is StatusFlag.IN_PROGRESS
    assert claimed.key == req2.key

    queue_manager.fail_request(claimed.key)
    assert request_manager.get_queue() == []
    assert request_manager.get_full_status(req2.key).status is StatusFlag.FAILED


def test_submit_returns_cached_result_without_queueing(request_manager, cache_manager, make_request) -> None:
    request = make_request()
    cache_manager.upload(request, b"cached")

    status = request_manager.submit(request)

    assert status.status is StatusFlag.COMPLETED
    assert status.url == f"http://localhost/service/report/{request.key}.csv"
    assert request_manager.get_queue() == []


def test_submit_resubmits_completed_request_missing_from_cache(
    request_manager, queue_manager, make_request
) -> None:
    request = make_request()
    queue_manager.submit(request)
    queue_manager.next_request(0)
    queue_manager.finish_request(request.key)

    status = request_manager.submit(request)

    assert status.status is StatusFlag.PENDING
    assert [s.key for s in request_manager.get_queue()] == [request.key]


def test_get_status_completed_but_not_cached_is_unknown(request_manager, queue_manager, make_request) -> None:
    request = make_request()
    queue_manager.submit(request)
    queue_manager.next_request(0)
    queue_manager.finish_request(request.key)

    assert request_manager.get_status(request.key).status is StatusFlag.UNKNOWN


def test_full_status_waits_for_result_to_become_visible(request_manager, queue_manager, make_request) -> None:
    request = make_request()
    queue_manager.submit(request)
    queue_manager.next_request(0)
    queue_manager.finish_request(request.key)

    cache = Mock(wraps=request_manager.cache_manager)
    cache.is_ready.side_effect = [False, False, True]
    cache.get_result_url.return_value = "http://localhost/service/report/late.csv"
    request_manager._cache = cache

    with patch("batch.manager.time.sleep") as sleep:
        status = request_manager.get_full_status(request.key)

    assert status.status is StatusFlag.COMPLETED
    assert status.url.endswith("late.csv")
    assert sleep.call_count == 2


def test_full_status_gives_up_when_result_never_visible(request_manager, queue_manager, make_request) -> None:
    request = make_request()
    queue_manager.submit(request)
    queue_manager.next_request(0)
    queue_manager.finish_request(request.key)

    assert request_manager.get_full_status(request.key).status is StatusFlag.UNKNOWN


def test_full_status_in_progress_eta_counts_down(request_manager, queue_manager, make_request) -> None:
    request = make_request(estimated_duration=10_000)
    queue_manager.submit(request)
    queue_manager.next_request(0)
    started = queue_manager.get_status(request.key).started

    with patch("batch.manager.current_millis", return_value=started + 4_000):
        status = request_manager.get_full_status(request.key)

    assert status.position_in_queue == 0
    assert status.eta == 6_000


def test_full_status_in_progress_overdue_eta_is_zero(request_manager, queue_manager, make_request) -> None:
    request = make_request(estimated_duration=100)
    queue_manager.submit(request)
    queue_manager.next_request(0)
    started = queue_manager.get_status(request.key).started

    with patch("batch.manager.current_millis", return_value=started + 5_000):
        assert request_manager.get_full_status(request.key).eta == 0


def test_full_status_pending_treats_missing_estimate_as_zero(request_manager, make_request) -> None:
    request_manager.submit(make_request("/a", estimated_duration=None))
    last = make_request("/b", estimated_duration=30)
    request_manager.submit(last)

    status = request_manager.get_full_status(last.key)

    assert status.position_in_queue == 2
    assert status.eta == 30


def test_full_status_unknown_key(request_manager) -> None:
    status = request_manager.get_full_status("missing")

    assert status == BatchStatus(key="missing", status=StatusFlag.UNKNOWN)


def test_status_serialises_with_camel_case_aliases(request_manager, make_request) -> None:
    request = make_request(estimated_duration=70)
    request_manager.submit(request)

    payload = request_manager.get_full_status(request.key).as_json()

    assert payload == {
        "key": request.key,
        "status": "Pending",
        "positionInQueue": 1,
        "estimatedTime": 70,
        "eta": 70,
    }

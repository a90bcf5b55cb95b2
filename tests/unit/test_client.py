from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

from quizarena.client import ArenaApiError, ArenaClient


class FakeResponse:
    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Replays queued responses and records every request"""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def ok(data: Any) -> FakeResponse:
    return FakeResponse(200, {"status": "success", "message": "Success", "data": data})


def transient() -> FakeResponse:
    return FakeResponse(503, {"status": "error", "message": "Transaction aborted",
                              "error": "transient_storage_error", "retryable": True})


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("quizarena.client.time.sleep", lambda seconds: None)


def test_get_standings_retries_transient_errors() -> None:
    session = FakeSession([transient(), requests.exceptions.ConnectionError("refused"), ok([{"rank": 1}])])
    client = ArenaClient("http://arena.test/", session=session)

    assert client.get_standings("c1") == [{"rank": 1}]
    assert len(session.calls) == 3
    assert session.calls[0]["url"] == "http://arena.test/api/standings/get/c1"
    assert session.calls[0]["params"] == {"final_only": "false"}


def test_retries_give_up_after_max_attempts() -> None:
    session = FakeSession([transient(), transient()])
    client = ArenaClient(session=session, max_retries=2)

    with pytest.raises(ArenaApiError) as excinfo:
        client.submit_draft("c1", "u1", "p1", ["A"])
    assert excinfo.value.kind == "transient_storage_error"
    assert len(session.calls) == 2


def test_finalize_ratings_is_sent_once() -> None:
    session = FakeSession([transient(), ok([])])
    client = ArenaClient(admin_token="secret", session=session)

    with pytest.raises(ArenaApiError) as excinfo:
        client.finalize_ratings("c1")
    assert excinfo.value.retryable
    assert len(session.calls) == 1
    assert session.calls[0]["headers"]["X-Admin-Token"] == "secret"


def test_final_submission_is_not_retried() -> None:
    session = FakeSession([requests.exceptions.Timeout("slow"), ok({})])
    client = ArenaClient(session=session)

    with pytest.raises(ArenaApiError):
        client.submit_final("c1", "u1", [{"problem_id": "p1", "selected_options": ["A"]}])
    assert len(session.calls) == 1


def test_non_retryable_error_is_raised_immediately() -> None:
    session = FakeSession([FakeResponse(409, {"status": "error", "message": "Already finalized",
                                              "error": "duplicate_final_submission", "retryable": False})])
    client = ArenaClient(session=session)

    with pytest.raises(ArenaApiError) as excinfo:
        client.submit_draft("c1", "u1", "p1", ["A"])
    assert excinfo.value.status_code == 409
    assert excinfo.value.kind == "duplicate_final_submission"
    assert len(session.calls) == 1


def test_admin_calls_need_a_token() -> None:
    client = ArenaClient(session=FakeSession([]))
    with pytest.raises(ArenaApiError):
        client.finalize_ratings("c1")


def test_non_json_response() -> None:
    session = FakeSession([FakeResponse(502, ValueError("not json"))] * 3)
    client = ArenaClient(session=session)

    with pytest.raises(ArenaApiError) as excinfo:
        client.get_standings("c1")
    assert excinfo.value.status_code == 502
    assert len(session.calls) == 3

from __future__ import annotations

from datetime import timedelta

import pytest

from quizarena.engine.errors import TransientStorageError
from quizarena.server import server
from quizarena.utils.config_manager import ConfigManager

from tests.conftest import CONTEST_END, CONTEST_START, FixedClock


ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def api(tmp_path):
    config = ConfigManager(str(tmp_path / "none.json"), load_env=False)
    config.set("auth.admin_token", "secret")
    config.set("retry.initial_delay", 0)
    config.set("contest.auto_submit_grace_seconds", 30)
    clock = FixedClock(CONTEST_START + timedelta(minutes=5))
    server.init_services(config, db_path=str(tmp_path / "api.duckdb"), clock_fn=clock)
    server.app.config["TESTING"] = True
    with server.app.test_client() as client:
        client.clock = clock
        yield client
    server.storage.close()


def data_of(response):
    body = response.get_json()
    assert body["status"] == "success", body
    return body["data"]


def seed(api):
    for problem in (
        {"id": "p1", "title": "One", "options": ["A", "B"], "correct_option": "B", "score": 100},
        {"id": "p2", "title": "Two", "options": ["A", "B", "C"], "correct_option": ["A", "C"], "score": 200},
    ):
        assert api.post("/api/problems/create", json=problem, headers=ADMIN).status_code == 201

    users = {}
    for name in ("xena", "yuri"):
        users[name] = data_of(api.post("/api/users/create", json={"username": name}))["id"]

    contest = data_of(api.post("/api/contests/create", headers=ADMIN, json={
        "title": "API Contest",
        "start_time": CONTEST_START.isoformat(),
        "end_time": CONTEST_END.isoformat(),
        "problem_ids": ["p1", "p2"],
        "is_published": True,
    }))
    return users, contest["id"]


def test_health(api) -> None:
    info = data_of(api.get("/api/system/health"))
    assert info["storage_format"] == "duckdb"


def test_operator_routes_require_token(api) -> None:
    response = api.post("/api/problems/create", json={"title": "x", "correct_option": "A", "score": 1})
    assert response.status_code == 403
    assert response.get_json()["error"] == "unauthorized"

    response = api.post("/api/ratings/finalize/anything", headers={"X-Admin-Token": "wrong"})
    assert response.status_code == 403


def test_contest_flow_end_to_end(api) -> None:
    users, contest_id = seed(api)
    x, y = users["xena"], users["yuri"]

    api.clock.set(CONTEST_START + timedelta(minutes=10))
    draft = data_of(api.post(f"/api/submissions/draft/{contest_id}",
                             json={"user_id": x, "problem_id": "p1", "selected_options": ["B"]}))
    assert draft["verdict"] == "Accepted"

    api.clock.set(CONTEST_START + timedelta(minutes=15))
    api.post(f"/api/submissions/draft/{contest_id}",
             json={"user_id": y, "problem_id": "p1", "selected_options": ["A"]})
    api.clock.set(CONTEST_START + timedelta(minutes=20))
    final = data_of(api.post(f"/api/submissions/final/{contest_id}", json={
        "user_id": y, "answers": [{"problem_id": "p1", "selected_options": ["B"]}],
    }))
    assert final["total_score"] == 100

    standings = data_of(api.get(f"/api/standings/get/{contest_id}"))
    assert [(s["user_id"], s["rank"], s["total_score"]) for s in standings] == [(x, 1, 100), (y, 2, 100)]

    again = api.post(f"/api/submissions/final/{contest_id}", json={
        "user_id": y, "answers": [{"problem_id": "p1", "selected_options": ["B"]}],
    })
    assert again.status_code == 409
    assert again.get_json()["error"] == "duplicate_final_submission"

    early = api.post(f"/api/ratings/finalize/{contest_id}", headers=ADMIN)
    assert early.status_code == 409
    assert early.get_json()["error"] == "contest_not_ended"

    api.clock.set(CONTEST_END)
    changes = data_of(api.post(f"/api/ratings/finalize/{contest_id}", headers=ADMIN))
    # Only yuri finalized, a single-participant field has no expected score to beat
    assert [(c["user_id"], c["delta"]) for c in changes] == [(y, 0)]

    repeat = api.post(f"/api/ratings/finalize/{contest_id}", headers=ADMIN)
    assert repeat.status_code == 409
    assert repeat.get_json()["error"] == "ratings_already_finalized"

    history = data_of(api.get(f"/api/users/rating-history/{y}"))
    assert [h["contest_id"] for h in history] == [contest_id]


def test_auto_submit_requires_operator(api) -> None:
    users, contest_id = seed(api)
    api.clock.set(CONTEST_END + timedelta(seconds=10))
    body = {"user_id": users["xena"], "auto_submit": True,
            "answers": [{"problem_id": "p2", "selected_options": ["A", "C"]}]}

    assert api.post(f"/api/submissions/final/{contest_id}", json=body).status_code == 403
    result = data_of(api.post(f"/api/submissions/final/{contest_id}", json=body, headers=ADMIN))
    assert result["total_score"] == 200


def test_submission_errors_map_to_status_codes(api) -> None:
    users, contest_id = seed(api)
    x = users["xena"]

    missing = api.post("/api/submissions/draft/nope", json={"user_id": x, "problem_id": "p1", "selected_options": ["B"]})
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "contest_not_found"

    api.clock.set(CONTEST_START - timedelta(minutes=1))
    closed = api.post(f"/api/submissions/draft/{contest_id}",
                      json={"user_id": x, "problem_id": "p1", "selected_options": ["B"]})
    assert closed.status_code == 409
    assert closed.get_json()["error"] == "contest_not_active"

    assert api.post(f"/api/submissions/draft/{contest_id}", json={}).status_code == 400


def test_practice_routes(api) -> None:
    users, _ = seed(api)
    x = users["xena"]

    result = data_of(api.post("/api/submissions/practice",
                              json={"user_id": x, "problem_id": "p1", "selected_option": "A"}))
    assert result["verdict"] == "Incorrect"
    assert result["correct_option"] == "B"

    drawn = data_of(api.get("/api/problems/random", query_string={"user_id": x, "count": 5}))
    assert [p["id"] for p in drawn] == ["p2"]
    assert "correct_option" not in drawn[0]

    history = data_of(api.get(f"/api/submissions/practice-history/{x}"))
    assert len(history) == 1


def test_contest_visibility_and_registration(api) -> None:
    users, contest_id = seed(api)

    data_of(api.post(f"/api/contests/toggle-publish/{contest_id}", headers=ADMIN))
    assert api.get(f"/api/contests/get/{contest_id}").status_code == 404
    assert data_of(api.get("/api/contests/list")) == []
    assert len(data_of(api.get("/api/contests/list", headers=ADMIN))) == 1

    details = data_of(api.get(f"/api/contests/get/{contest_id}",
                              query_string={"include_problems": "true"}, headers=ADMIN))
    assert details["state"] == "active"
    assert [p["id"] for p in details["problems"]] == ["p1", "p2"]

    registered = data_of(api.post(f"/api/contests/register/{contest_id}", json={"user_id": users["yuri"]}))
    assert registered["participant_ids"] == [users["yuri"]]
    duplicate = api.post(f"/api/contests/register/{contest_id}", json={"user_id": users["yuri"]})
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "already_registered"


def test_duplicate_username(api) -> None:
    api.post("/api/users/create", json={"username": "dup"})
    response = api.post("/api/users/create", json={"username": "dup"})
    assert response.status_code == 409


def test_global_leaderboard_route(api) -> None:
    seed(api)
    board = data_of(api.get("/api/leaderboard", query_string={"limit": 1}))
    assert len(board["leaderboard"]) == 1
    assert board["pagination"]["total_pages"] == 2


def test_standings_retry_transient_errors(api, monkeypatch) -> None:
    _, contest_id = seed(api)
    calls = {"count": 0}
    real = server.leaderboard.compute_standings

    def flaky(contest_id, final_only=False):
        calls["count"] += 1
        if calls["count"] < 3:
            raise TransientStorageError("Conflict on update")
        return real(contest_id, final_only=final_only)

    monkeypatch.setattr(server.leaderboard, "compute_standings", flaky)
    assert data_of(api.get(f"/api/standings/get/{contest_id}")) == []
    assert calls["count"] == 3


def test_finalize_is_not_retried(api, monkeypatch) -> None:
    _, contest_id = seed(api)
    calls = {"count": 0}

    def failing(contest_id):
        calls["count"] += 1
        raise TransientStorageError("Conflict on update")

    monkeypatch.setattr(server.rating_engine, "finalize_ratings", failing)
    response = api.post(f"/api/ratings/finalize/{contest_id}", headers=ADMIN)
    assert response.status_code == 503
    assert response.get_json()["retryable"] is True
    assert calls["count"] == 1


def test_numeric_admin_token_from_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("QUIZARENA_ADMIN_TOKEN", "123456")
    config = ConfigManager(str(tmp_path / "none.json"))
    server.init_services(config, db_path=str(tmp_path / "env.duckdb"),
                         clock_fn=FixedClock(CONTEST_START))
    server.app.config["TESTING"] = True
    try:
        with server.app.test_client() as client:
            response = client.post("/api/ratings/finalize/missing", headers={"X-Admin-Token": "123456"})
            assert response.status_code == 404
            assert response.get_json()["error"] == "contest_not_found"

            denied = client.post("/api/ratings/finalize/missing", headers={"X-Admin-Token": "12345"})
            assert denied.status_code == 403
    finally:
        server.storage.close()


def test_final_submission_with_malformed_answers(api) -> None:
    users, contest_id = seed(api)
    response = api.post(f"/api/submissions/final/{contest_id}",
                        json={"user_id": users["xena"], "answers": ["p1", 7]})
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_submission"

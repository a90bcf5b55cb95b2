from __future__ import annotations

from datetime import timedelta

import pytest

from quizarena.engine.contest import require_active, require_ended
from quizarena.engine.errors import (
    AlreadyRegistered, ContestNotActive, ContestNotEnded, ContestNotFound,
    InvalidContest, ProblemNotFound, RatingsAlreadyFinalized
)
from quizarena.models.models import ContestState

from tests.conftest import CONTEST_END, CONTEST_START


def test_lifecycle_states(registry, problems, clock) -> None:
    contest = registry.create_contest(
        "Draft contest", CONTEST_START, CONTEST_END, ["p1"], is_published=False
    )

    clock.set(CONTEST_START - timedelta(hours=1))
    assert registry.state_of(contest.id) == ContestState.CREATED

    registry.toggle_publish(contest.id)
    assert registry.state_of(contest.id) == ContestState.PUBLISHED

    clock.set(CONTEST_START)
    assert registry.state_of(contest.id) == ContestState.ACTIVE

    clock.set(CONTEST_END)
    assert registry.state_of(contest.id) == ContestState.ENDED


def test_toggle_publish_flips_flag(registry, storage, contest) -> None:
    assert registry.toggle_publish(contest.id).is_published is False
    assert storage.get_contest(contest.id).is_published is False
    assert registry.toggle_publish(contest.id).is_published is True


def test_create_contest_validation(registry, problems) -> None:
    with pytest.raises(InvalidContest):
        registry.create_contest("", CONTEST_START, CONTEST_END, ["p1"])
    with pytest.raises(InvalidContest):
        registry.create_contest("Backwards", CONTEST_END, CONTEST_START, ["p1"])
    with pytest.raises(InvalidContest):
        registry.create_contest("Dupes", CONTEST_START, CONTEST_END, ["p1", "p1"])
    with pytest.raises(ProblemNotFound):
        registry.create_contest("Missing", CONTEST_START, CONTEST_END, ["p1", "nope"])


def test_get_contest_round_trips_problem_order(registry, problems) -> None:
    created = registry.create_contest("Ordered", CONTEST_START, CONTEST_END, ["p3", "p1", "p2"])
    loaded = registry.get_contest(created.id)
    assert loaded.problem_ids == ["p3", "p1", "p2"]
    assert loaded.start_time == CONTEST_START
    assert loaded.end_time == CONTEST_END

    with pytest.raises(ContestNotFound):
        registry.get_contest("missing")


def test_register_once(registry, contest, users, clock) -> None:
    registry.register(contest.id, "alice")
    with pytest.raises(AlreadyRegistered):
        registry.register(contest.id, "alice")

    clock.set(CONTEST_END)
    with pytest.raises(ContestNotActive):
        registry.register(contest.id, "bob")

    assert registry.get_contest(contest.id).participant_ids == ["alice"]


def test_require_active_window(contest) -> None:
    assert require_active(contest, CONTEST_START).id == contest.id
    with pytest.raises(ContestNotActive):
        require_active(contest, CONTEST_START - timedelta(microseconds=1))
    with pytest.raises(ContestNotActive):
        require_active(contest, CONTEST_END)

    grace = timedelta(seconds=5)
    assert require_active(contest, CONTEST_END + grace, grace).checked_at == CONTEST_END + grace
    with pytest.raises(ContestNotActive):
        require_active(contest, CONTEST_END + grace + timedelta(seconds=1), grace)

    # Auto-submission with no grace still accepts the exact expiry instant
    assert require_active(contest, CONTEST_END, timedelta(0)).checked_at == CONTEST_END
    with pytest.raises(ContestNotActive):
        require_active(contest, CONTEST_END + timedelta(microseconds=1), timedelta(0))


def test_require_ended(contest) -> None:
    with pytest.raises(ContestNotEnded):
        require_ended(contest, CONTEST_END - timedelta(seconds=1))
    assert require_ended(contest, CONTEST_END).contest is contest

    contest.ratings_updated = True
    with pytest.raises(RatingsAlreadyFinalized):
        require_ended(contest, CONTEST_END)
    assert contest.state_at(CONTEST_END) == ContestState.RATINGS_FINALIZED

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from quizarena.engine.contest import ContestRegistry
from quizarena.engine.ledger import SubmissionLedger
from quizarena.engine.storage import DuckDBStorage
from quizarena.models.models import Contest, Problem, User


CONTEST_START = datetime(2025, 3, 1, 10, 0, 0)
CONTEST_END = datetime(2025, 3, 1, 12, 0, 0)


class FixedClock:
    """Clock that only moves when a test moves it"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(CONTEST_START + timedelta(minutes=10))


@pytest.fixture
def storage(tmp_path) -> DuckDBStorage:
    db = DuckDBStorage(db_path=str(tmp_path / "arena.duckdb"))
    yield db
    db.close()


@pytest.fixture
def make_problem(storage):
    def _make(problem_id: str, correct, score: int = 100,
              options: Optional[List[str]] = None, subject: str = "math") -> Problem:
        problem = Problem(
            id=problem_id,
            title=f"Problem {problem_id}",
            correct_option=correct,
            score=score,
            options=options or ["A", "B", "C", "D"],
            subject=subject,
        )
        return storage.create_problem(problem)
    return _make


@pytest.fixture
def problems(make_problem) -> Dict[str, Problem]:
    return {
        "p1": make_problem("p1", "B", score=100),
        "p2": make_problem("p2", ["A", "C"], score=200),
        "p3": make_problem("p3", "D", score=50, subject="physics"),
    }


@pytest.fixture
def users(storage) -> Dict[str, User]:
    return {
        name: storage.create_user(name, user_id=name)
        for name in ("alice", "bob", "carol")
    }


@pytest.fixture
def registry(storage, clock) -> ContestRegistry:
    return ContestRegistry(storage, clock)


@pytest.fixture
def contest(registry, problems) -> Contest:
    return registry.create_contest(
        title="Weekly Quiz",
        start_time=CONTEST_START,
        end_time=CONTEST_END,
        problem_ids=["p1", "p2"],
        is_published=True,
    )


@pytest.fixture
def ledger(storage, clock) -> SubmissionLedger:
    return SubmissionLedger(storage, clock=clock, auto_submit_grace=timedelta(seconds=30))

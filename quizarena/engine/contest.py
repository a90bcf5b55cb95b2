"""
Contest registry and lifecycle.

A contest moves through CREATED -> PUBLISHED -> ACTIVE -> ENDED ->
RATINGS_FINALIZED. The state is derived from the stored record and the
clock; operations that need a particular state ask for a typed value
(``ActiveContest``, ``EndedContest``) instead of re-checking flags.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..models.models import Contest, ContestState, generate_id
from ..utils.logger_config import get_logger
from .errors import (
    ContestNotActive, ContestNotEnded, ContestNotFound, InvalidContest,
    ProblemNotFound, RatingsAlreadyFinalized, UserNotFound
)
from .storage import DuckDBStorage

logger = get_logger("contest")

Clock = Callable[[], datetime]


class ActiveContest:
    """A contest whose submission window was open at ``checked_at``"""
    state = ContestState.ACTIVE

    def __init__(self, contest: Contest, checked_at: datetime):
        self.contest = contest
        self.checked_at = checked_at

    @property
    def id(self) -> str:
        return self.contest.id


class EndedContest:
    """A contest past its end time whose ratings have not been applied"""
    state = ContestState.ENDED

    def __init__(self, contest: Contest, checked_at: datetime):
        self.contest = contest
        self.checked_at = checked_at

    @property
    def id(self) -> str:
        return self.contest.id


class FinalizedContest:
    """Terminal state: ratings were applied exactly once"""
    state = ContestState.RATINGS_FINALIZED

    def __init__(self, contest: Contest, finalized_at: datetime):
        self.contest = contest
        self.finalized_at = finalized_at

    @property
    def id(self) -> str:
        return self.contest.id


def require_active(contest: Contest, now: datetime, grace: Optional[timedelta] = None) -> ActiveContest:
    """
    Check that ``now`` falls in ``[start_time, end_time)``.

    Passing a ``grace`` (zero included) marks a system auto-submission at
    expiry, which is accepted through ``end_time + grace`` inclusive.
    """
    if now < contest.start_time:
        raise ContestNotActive(contest.id, f"Contest {contest.id} has not started yet")
    if grace is not None:
        closed = now > contest.end_time + grace
    else:
        closed = now >= contest.end_time
    if closed:
        raise ContestNotActive(contest.id, f"Contest {contest.id} has ended")
    return ActiveContest(contest, now)


def require_ended(contest: Contest, now: datetime) -> EndedContest:
    if contest.ratings_updated:
        raise RatingsAlreadyFinalized(contest.id)
    if not contest.has_ended_at(now):
        raise ContestNotEnded(contest.id)
    return EndedContest(contest, now)


class ContestRegistry:
    """Creates, looks up and transitions contests"""

    def __init__(self, storage: DuckDBStorage, clock: Clock = datetime.now):
        self.storage = storage
        self.clock = clock

    def create_contest(
        self,
        title: str,
        start_time: datetime,
        end_time: datetime,
        problem_ids: List[str],
        description: str = "",
        is_published: bool = False,
    ) -> Contest:
        if not title:
            raise InvalidContest("Contest title is required")
        if end_time <= start_time:
            raise InvalidContest("Contest end_time must be after start_time")
        if len(set(problem_ids)) != len(problem_ids):
            raise InvalidContest("Contest problem list contains duplicates")

        found = self.storage.get_problems(problem_ids)
        for problem_id in problem_ids:
            if problem_id not in found:
                raise ProblemNotFound(problem_id)

        contest = Contest(
            id=generate_id(),
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            problem_ids=problem_ids,
            is_published=is_published,
            created_at=self.clock(),
        )
        return self.storage.create_contest(contest)

    def get_contest(self, contest_id: str) -> Contest:
        contest = self.storage.get_contest(contest_id)
        if contest is None:
            raise ContestNotFound(contest_id)
        return contest

    def list_contests(self, published_only: bool = False) -> List[Contest]:
        return self.storage.list_contests(published_only=published_only)

    def state_of(self, contest_id: str) -> ContestState:
        return self.get_contest(contest_id).state_at(self.clock())

    def toggle_publish(self, contest_id: str) -> Contest:
        contest = self.get_contest(contest_id)
        contest.is_published = not contest.is_published
        self.storage.set_contest_published(contest_id, contest.is_published)
        logger.info(f"Contest {contest_id} {'published' if contest.is_published else 'unpublished'}")
        return contest

    def register(self, contest_id: str, user_id: str) -> Contest:
        contest = self.get_contest(contest_id)
        if self.storage.get_user(user_id) is None:
            raise UserNotFound(user_id)
        if contest.has_ended_at(self.clock()):
            raise ContestNotActive(contest_id, f"Contest {contest_id} has ended")
        self.storage.add_participant(contest_id, user_id, self.clock())
        contest.participant_ids.append(user_id)
        logger.info(f"User {user_id} registered for contest {contest_id}")
        return contest

    def active(self, contest_id: str, grace: Optional[timedelta] = None) -> ActiveContest:
        return require_active(self.get_contest(contest_id), self.clock(), grace)

    def ended(self, contest_id: str) -> EndedContest:
        return require_ended(self.get_contest(contest_id), self.clock())

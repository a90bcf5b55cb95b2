from enum import Enum
from typing import Dict, List, Optional, Any, Iterable, Union
from datetime import datetime
import uuid

# Helper function to generate unique IDs
def generate_id() -> str:
    """Generate a unique ID for entities"""
    return str(uuid.uuid4())


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Verdict(str, Enum):
    # Contest mode
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    # Practice mode
    CORRECT = "Correct"
    INCORRECT = "Incorrect"

    @property
    def is_correct(self) -> bool:
        return self in (Verdict.ACCEPTED, Verdict.CORRECT)


class ContestState(str, Enum):
    CREATED = "created"
    PUBLISHED = "published"
    ACTIVE = "active"
    ENDED = "ended"
    RATINGS_FINALIZED = "ratings_finalized"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Problem:
    def __init__(
        self,
        id: str,
        title: str,
        correct_option: Union[str, List[str]],
        score: int,
        description: str = "",
        options: Optional[List[str]] = None,
        subject: str = "",
        tags: Optional[List[str]] = None,
        difficulty: int = 0,
    ):
        self.id = id
        self.title = title
        self.description = description
        self.options = list(options or [])
        # Single-select problems carry exactly one correct option
        if isinstance(correct_option, str):
            self.correct_option = [correct_option]
        else:
            self.correct_option = list(correct_option)
        self.score = score
        self.subject = subject
        self.tags = list(tags or [])
        self.difficulty = difficulty

    @property
    def is_multi_select(self) -> bool:
        return len(self.correct_option) > 1

    def to_dict(self, include_answer: bool = False) -> Dict:
        result = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "options": self.options,
            "score": self.score,
            "subject": self.subject,
            "tags": self.tags,
            "difficulty": self.difficulty,
            "multi_select": self.is_multi_select,
        }
        if include_answer:
            result["correct_option"] = self.correct_option
        return result


class Contest:
    def __init__(
        self,
        id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
        problem_ids: Optional[List[str]] = None,
        participant_ids: Optional[List[str]] = None,
        is_published: bool = False,
        ratings_updated: bool = False,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.title = title
        self.description = description
        self.start_time = start_time
        self.end_time = end_time
        self.problem_ids = list(problem_ids or [])
        self.participant_ids = list(participant_ids or [])
        self.is_published = is_published
        self.ratings_updated = ratings_updated
        self.created_at = created_at

    def has_problem(self, problem_id: str) -> bool:
        return problem_id in self.problem_ids

    def is_active_at(self, now: datetime) -> bool:
        """The contest window is the half-open interval [start_time, end_time)"""
        return self.start_time <= now < self.end_time

    def has_ended_at(self, now: datetime) -> bool:
        return now >= self.end_time

    def state_at(self, now: datetime) -> ContestState:
        if self.ratings_updated:
            return ContestState.RATINGS_FINALIZED
        if self.has_ended_at(now):
            return ContestState.ENDED
        if self.is_active_at(now):
            return ContestState.ACTIVE
        if self.is_published:
            return ContestState.PUBLISHED
        return ContestState.CREATED

    def to_dict(self, now: Optional[datetime] = None) -> Dict:
        result = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_time": _isoformat(self.start_time),
            "end_time": _isoformat(self.end_time),
            "problem_ids": self.problem_ids,
            "participant_ids": self.participant_ids,
            "participant_count": len(self.participant_ids),
            "problem_count": len(self.problem_ids),
            "is_published": self.is_published,
            "ratings_updated": self.ratings_updated,
            "created_at": _isoformat(self.created_at),
        }
        if now is not None:
            result["state"] = self.state_at(now).value
        return result


class Submission:
    """An answer to a problem, either in practice mode or inside a contest"""
    def __init__(
        self,
        id: str,
        user_id: str,
        problem_id: str,
        selected_options: List[str],
        submitted_at: datetime,
        verdict: Verdict,
        score: int = 0,
        contest_id: Optional[str] = None,
        is_final: bool = False,
    ):
        self.id = id
        self.user_id = user_id
        self.problem_id = problem_id
        self.contest_id = contest_id
        self.selected_options = list(selected_options)
        self.submitted_at = submitted_at
        self.verdict = verdict
        self.score = score
        self.is_final = is_final

    @property
    def is_practice(self) -> bool:
        return self.contest_id is None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "problem_id": self.problem_id,
            "contest_id": self.contest_id,
            "selected_options": self.selected_options,
            "submitted_at": _isoformat(self.submitted_at),
            "verdict": self.verdict.value,  # Use .value for enum serialization
            "score": self.score,
            "is_final": self.is_final,
        }


class RatingHistoryEntry:
    def __init__(self, contest_id: str, old_rating: int, new_rating: int, timestamp: datetime):
        self.contest_id = contest_id
        self.old_rating = old_rating
        self.new_rating = new_rating
        self.timestamp = timestamp

    @property
    def delta(self) -> int:
        return self.new_rating - self.old_rating

    def to_dict(self) -> Dict:
        return {
            "contest_id": self.contest_id,
            "old_rating": self.old_rating,
            "new_rating": self.new_rating,
            "delta": self.delta,
            "timestamp": _isoformat(self.timestamp),
        }


class User:
    def __init__(
        self,
        id: str,
        username: str,
        rating: int = 300,
        title: str = "Newbie",
        role: UserRole = UserRole.USER,
        institute: str = "self",
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.username = username
        self.rating = rating
        self.title = title
        self.role = role
        self.institute = institute
        self.created_at = created_at

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "username": self.username,
            "rating": self.rating,
            "title": self.title,
            "role": self.role.value,
            "institute": self.institute,
            "created_at": _isoformat(self.created_at),
        }


class StandingEntry:
    """One row of a contest leaderboard"""
    def __init__(
        self,
        user_id: str,
        total_score: int,
        last_submission_time: Optional[datetime],
        rank: int,
        username: Optional[str] = None,
    ):
        self.user_id = user_id
        self.username = username
        self.total_score = total_score
        self.last_submission_time = last_submission_time
        self.rank = rank

    def to_dict(self) -> Dict:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "username": self.username,
            "total_score": self.total_score,
            "last_submission_time": _isoformat(self.last_submission_time),
        }


class RatingChange:
    def __init__(self, user_id: str, rank: int, old_rating: int, new_rating: int, new_title: str):
        self.user_id = user_id
        self.rank = rank
        self.old_rating = old_rating
        self.new_rating = new_rating
        self.new_title = new_title

    @property
    def delta(self) -> int:
        return self.new_rating - self.old_rating

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "rank": self.rank,
            "old_rating": self.old_rating,
            "new_rating": self.new_rating,
            "delta": self.delta,
            "new_title": self.new_title,
        }


def normalize_options(selected: Any) -> List[str]:
    """Accept a single option or an iterable of options and return a list of strings"""
    if selected is None:
        return []
    if isinstance(selected, str):
        return [selected]
    if isinstance(selected, Iterable):
        return [str(option) for option in selected]
    return [str(selected)]

"""
QuizArena - contest scoring and rating engine

Grades multiple-choice answers, ranks contest participants and applies
multiplayer Elo rating updates once a contest has ended.
"""

from .models.models import (
    Contest, ContestState, Problem, RatingChange, RatingHistoryEntry,
    StandingEntry, Submission, User, UserRole, Verdict, generate_id
)
from .engine.storage import DuckDBStorage
from .engine.judge import Judge
from .engine.contest import ContestRegistry
from .engine.ledger import SubmissionLedger
from .engine.leaderboard import LeaderboardAggregator
from .engine.rating import RatingEngine

__version__ = "0.1.0"
__all__ = [
    "Contest", "ContestState", "Problem", "RatingChange", "RatingHistoryEntry",
    "StandingEntry", "Submission", "User", "UserRole", "Verdict", "generate_id",
    "DuckDBStorage", "Judge", "ContestRegistry", "SubmissionLedger",
    "LeaderboardAggregator", "RatingEngine"
]

"""
Engine business logic for QuizArena.

This module contains the grading judge, the submission ledger, the contest
registry, the leaderboard aggregator, the rating engine and their storage.
"""

from .storage import DuckDBStorage
from .judge import Judge, GradeResult
from .contest import ContestRegistry, ActiveContest, EndedContest, FinalizedContest
from .ledger import SubmissionLedger
from .leaderboard import LeaderboardAggregator
from .rating import RatingEngine, PolicyTable, compute_rating_changes

__all__ = [
    "DuckDBStorage", "Judge", "GradeResult",
    "ContestRegistry", "ActiveContest", "EndedContest", "FinalizedContest",
    "SubmissionLedger", "LeaderboardAggregator",
    "RatingEngine", "PolicyTable", "compute_rating_changes"
]

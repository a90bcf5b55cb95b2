"""
Models package for QuizArena.

This package contains the data models shared by the ledger, the
leaderboard aggregator and the rating engine.
"""

from .models import (
    Contest,
    ContestState,
    Problem,
    RatingChange,
    RatingHistoryEntry,
    StandingEntry,
    Submission,
    User,
    UserRole,
    Verdict,
    generate_id,
    normalize_options,
)

__all__ = [
    "Contest",
    "ContestState",
    "Problem",
    "RatingChange",
    "RatingHistoryEntry",
    "StandingEntry",
    "Submission",
    "User",
    "UserRole",
    "Verdict",
    "generate_id",
    "normalize_options",
]

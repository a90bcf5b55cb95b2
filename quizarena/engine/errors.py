"""
Error kinds raised by the scoring and rating engine.

Every error carries the HTTP status the API layer answers with and a short
``kind`` string so callers can tell the cases apart without parsing messages.
Only ``TransientStorageError`` is retryable.
"""

from typing import Optional


class ArenaError(Exception):
    """Base class for all engine errors"""
    status_code = 400
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "retryable": self.retryable}


# Missing entities

class NotFoundError(ArenaError):
    status_code = 404
    kind = "not_found"


class ContestNotFound(NotFoundError):
    kind = "contest_not_found"

    def __init__(self, contest_id: str):
        super().__init__(f"Contest with ID {contest_id} not found")
        self.contest_id = contest_id


class ProblemNotFound(NotFoundError):
    kind = "problem_not_found"

    def __init__(self, problem_id: str):
        super().__init__(f"Problem with ID {problem_id} not found")
        self.problem_id = problem_id


class UserNotFound(NotFoundError):
    kind = "user_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User with ID {user_id} not found")
        self.user_id = user_id


class NoProblemsAvailable(NotFoundError):
    kind = "no_problems_available"


# Contest state preconditions

class InvalidStateError(ArenaError):
    status_code = 409
    kind = "invalid_state"


class ContestNotActive(InvalidStateError):
    kind = "contest_not_active"

    def __init__(self, contest_id: str, detail: Optional[str] = None):
        super().__init__(detail or f"Contest {contest_id} is not active")
        self.contest_id = contest_id


class ContestNotEnded(InvalidStateError):
    kind = "contest_not_ended"

    def __init__(self, contest_id: str):
        super().__init__(f"Contest {contest_id} hasn't ended")
        self.contest_id = contest_id


class RatingsAlreadyFinalized(InvalidStateError):
    kind = "ratings_already_finalized"

    def __init__(self, contest_id: str):
        super().__init__(f"Ratings already updated for contest {contest_id}")
        self.contest_id = contest_id


class RatingRunInProgress(InvalidStateError):
    kind = "rating_run_in_progress"

    def __init__(self, contest_id: str):
        super().__init__(
            f"A rating run for contest {contest_id} is already in progress or was interrupted; "
            f"an operator must inspect and clear it before retrying"
        )
        self.contest_id = contest_id


class AlreadyRegistered(InvalidStateError):
    kind = "already_registered"

    def __init__(self, contest_id: str, user_id: str):
        super().__init__(f"User {user_id} is already registered for contest {contest_id}")


# Submission rules

class DuplicateFinalSubmission(ArenaError):
    status_code = 409
    kind = "duplicate_final_submission"

    def __init__(self, contest_id: str, user_id: str):
        super().__init__(f"User {user_id} has already made a final submission for contest {contest_id}")
        self.contest_id = contest_id
        self.user_id = user_id


class ProblemNotInContest(ArenaError):
    kind = "problem_not_in_contest"

    def __init__(self, contest_id: str, problem_id: str):
        super().__init__(f"Problem {problem_id} does not belong to contest {contest_id}")
        self.contest_id = contest_id
        self.problem_id = problem_id


class InvalidSubmission(ArenaError):
    kind = "invalid_submission"


class InvalidContest(ArenaError):
    kind = "invalid_contest"


class NoParticipants(ArenaError):
    kind = "no_participants"

    def __init__(self, contest_id: str):
        super().__init__(f"Contest {contest_id} has no participants with final submissions")
        self.contest_id = contest_id


# Storage

class TransientStorageError(ArenaError):
    """Connection loss or transaction abort; safe to retry idempotent operations only"""
    status_code = 503
    kind = "transient_storage_error"
    retryable = True

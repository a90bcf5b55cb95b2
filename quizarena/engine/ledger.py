"""
Submission ledger: grades answers and records them as practice, draft or
final contest submissions.

Contest writes for one (contest, user) pair are serialized with an
in-process lock and each write is a single DuckDB transaction, so a draft
save can never land after that user's finalization.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models.models import Problem, Submission, Verdict, generate_id, normalize_options
from ..utils.logger_config import get_logger
from .contest import Clock, ContestRegistry
from .errors import (
    DuplicateFinalSubmission, InvalidSubmission, NoProblemsAvailable,
    ProblemNotFound, ProblemNotInContest, UserNotFound
)
from .judge import Judge
from .locks import submission_locks
from .storage import DuckDBStorage

logger = get_logger("ledger")


class SubmissionLedger:

    def __init__(
        self,
        storage: DuckDBStorage,
        judge: Optional[Judge] = None,
        clock: Clock = datetime.now,
        auto_submit_grace: timedelta = timedelta(0),
    ):
        self.storage = storage
        self.judge = judge or Judge()
        self.clock = clock
        self.auto_submit_grace = auto_submit_grace
        self.contests = ContestRegistry(storage, clock)

    def _require_problem(self, problem_id: str) -> Problem:
        problem = self.storage.get_problem(problem_id)
        if problem is None:
            raise ProblemNotFound(problem_id)
        return problem

    def _require_user(self, user_id: str) -> None:
        if self.storage.get_user(user_id) is None:
            raise UserNotFound(user_id)

    def submit_practice(self, user_id: str, problem_id: str, selected_option: Any) -> Dict[str, Any]:
        """
        Grade a practice answer and store it as a final record.

        Returns:
            Dictionary with the verdict, the correct option(s) and the stored submission
        """
        selected = normalize_options(selected_option)
        if not selected:
            raise InvalidSubmission("Problem ID and selected option are required")
        self._require_user(user_id)
        problem = self._require_problem(problem_id)

        submission = Submission(
            id=generate_id(),
            user_id=user_id,
            problem_id=problem_id,
            selected_options=selected,
            submitted_at=self.clock(),
            verdict=Verdict.INCORRECT,
            is_final=True,
        )
        self.judge.evaluate_submission(submission, problem)
        self.storage.insert_practice_submission(submission)
        logger.info(f"Practice submission by {user_id} on {problem_id}: {submission.verdict.value}")

        correct = problem.correct_option[0] if len(problem.correct_option) == 1 else problem.correct_option
        return {
            "verdict": submission.verdict.value,
            "correct_option": correct,
            "submission": submission.to_dict(),
        }

    def submit_draft(self, user_id: str, problem_id: str, contest_id: str, selected_options: Any) -> Submission:
        """
        Save (or overwrite) a contest answer before finalization.

        Raises:
            ContestNotFound, ContestNotActive, ProblemNotInContest,
            DuplicateFinalSubmission
        """
        selected = normalize_options(selected_options)
        if not selected:
            raise InvalidSubmission("At least one option must be selected")

        problem = self._require_problem(problem_id)
        active = self.contests.active(contest_id)
        if not active.contest.has_problem(problem_id):
            raise ProblemNotInContest(contest_id, problem_id)
        self._require_user(user_id)

        submission = Submission(
            id=generate_id(),
            user_id=user_id,
            problem_id=problem_id,
            contest_id=contest_id,
            selected_options=selected,
            submitted_at=active.checked_at,
            verdict=Verdict.WRONG_ANSWER,
            is_final=False,
        )
        self.judge.evaluate_submission(submission, problem)

        with submission_locks.hold((contest_id, user_id)):
            stored = self.storage.upsert_draft_submission(submission)

        logger.info(f"Draft saved for {user_id} on {problem_id} in contest {contest_id}: {stored.verdict.value}")
        return stored

    def submit_final_batch(
        self,
        user_id: str,
        contest_id: str,
        answers: List[Dict[str, Any]],
        auto_submit: bool = False,
    ) -> List[Submission]:
        """
        Lock in all of a user's answers for a contest.

        Args:
            answers: list of ``{"problem_id": ..., "selected_options": [...]}``
            auto_submit: system-triggered submission at expiry, accepted up
                to the configured grace period after end_time

        Raises:
            DuplicateFinalSubmission: the user already finalized this contest
        """
        contest = self.contests.get_contest(contest_id)
        if self.storage.has_final_submission(contest_id, user_id):
            raise DuplicateFinalSubmission(contest_id, user_id)

        grace = self.auto_submit_grace if auto_submit else None
        active = self.contests.active(contest_id, grace=grace)
        self._require_user(user_id)

        if not answers:
            raise InvalidSubmission("Final submission must contain at least one answer")
        if not all(isinstance(answer, dict) for answer in answers):
            raise InvalidSubmission("Each answer must be an object with problem_id and selected_options")

        problem_ids = [answer.get("problem_id") for answer in answers]
        if len(set(problem_ids)) != len(problem_ids):
            raise InvalidSubmission("Final submission answers the same problem more than once")
        for problem_id in problem_ids:
            if not contest.has_problem(problem_id):
                raise ProblemNotInContest(contest_id, problem_id)

        problems = self.storage.get_problems(problem_ids)
        submissions = []
        for answer in answers:
            problem_id = answer["problem_id"]
            problem = problems.get(problem_id)
            if problem is None:
                raise ProblemNotFound(problem_id)
            selected = normalize_options(answer.get("selected_options"))
            submission = Submission(
                id=generate_id(),
                user_id=user_id,
                problem_id=problem_id,
                contest_id=contest_id,
                selected_options=selected,
                submitted_at=active.checked_at,
                verdict=Verdict.WRONG_ANSWER,
                is_final=True,
            )
            self.judge.evaluate_submission(submission, problem)
            submissions.append(submission)

        with submission_locks.hold((contest_id, user_id)):
            stored = self.storage.finalize_contest_submissions(
                contest_id, user_id, submissions, active.checked_at
            )

        total = sum(s.score for s in submissions)
        logger.info(
            f"Final submission by {user_id} for contest {contest_id}: "
            f"{len(submissions)} answers, {total} points{' (auto-submit)' if auto_submit else ''}"
        )
        return stored

    def practice_history(self, user_id: str) -> List[Submission]:
        return self.storage.list_practice_submissions(user_id)

    def contest_submissions(self, contest_id: str, user_id: Optional[str] = None) -> List[Submission]:
        self.contests.get_contest(contest_id)
        return self.storage.list_contest_submissions(contest_id, user_id=user_id)

    def draw_practice_problems(self, user_id: str, count: int = 1,
                               subjects: Optional[List[str]] = None) -> List[Problem]:
        """Random problems the user has not yet faced in practice mode"""
        problems = self.storage.sample_unseen_problems(user_id, count=count, subjects=subjects)
        if not problems:
            raise NoProblemsAvailable(
                "No more problems found. You've solved them all for the selected subjects!"
            )
        return problems

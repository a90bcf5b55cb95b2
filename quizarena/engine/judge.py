from typing import List, NamedTuple

from ..models.models import Problem, Submission, Verdict
from ..utils.logger_config import get_logger
from .errors import InvalidSubmission

logger = get_logger("judge")


class GradeResult(NamedTuple):
    is_correct: bool
    verdict: Verdict
    score: int


class Judge:
    """
    Grades option selections against a problem's correct option(s).

    Grading is all-or-nothing: the selection must match the correct options
    exactly, ignoring order. There is no partial credit.
    """

    def grade(self, problem: Problem, selected_options: List[str], practice: bool = False) -> GradeResult:
        if not selected_options:
            raise InvalidSubmission(f"No option selected for problem {problem.id}")

        is_correct = sorted(selected_options) == sorted(problem.correct_option)
        if practice:
            verdict = Verdict.CORRECT if is_correct else Verdict.INCORRECT
        else:
            verdict = Verdict.ACCEPTED if is_correct else Verdict.WRONG_ANSWER
        score = problem.score if is_correct else 0
        return GradeResult(is_correct, verdict, score)

    def evaluate_submission(self, submission: Submission, problem: Problem) -> Submission:
        """
        Grade a submission in place, setting its verdict and score.
        """
        result = self.grade(problem, submission.selected_options, practice=submission.is_practice)
        submission.verdict = result.verdict
        submission.score = result.score
        logger.debug(
            f"Graded submission {submission.id} for problem {problem.id}: "
            f"{result.verdict.value}, score {result.score}"
        )
        return submission

from __future__ import annotations

import pytest

from quizarena.engine.errors import InvalidSubmission
from quizarena.engine.judge import Judge
from quizarena.models.models import Problem, Submission, Verdict


SINGLE = Problem(id="s", title="Single", correct_option="B", score=100)
MULTI = Problem(id="m", title="Multi", correct_option=["A", "C"], score=250)


def test_single_select_correct_scores_full_points() -> None:
    result = Judge().grade(SINGLE, ["B"])
    assert result.is_correct
    assert result.verdict == Verdict.ACCEPTED
    assert result.score == 100


def test_single_select_wrong_scores_zero() -> None:
    result = Judge().grade(SINGLE, ["C"])
    assert not result.is_correct
    assert result.verdict == Verdict.WRONG_ANSWER
    assert result.score == 0


def test_multi_select_is_order_independent() -> None:
    judge = Judge()
    assert judge.grade(MULTI, ["C", "A"]).score == 250
    assert judge.grade(MULTI, ["A", "C"]).score == 250


@pytest.mark.parametrize("selected", [["A"], ["A", "B", "C"], ["A", "A", "C"], ["B", "D"]])
def test_multi_select_has_no_partial_credit(selected) -> None:
    result = Judge().grade(MULTI, selected)
    assert result.score == 0
    assert result.verdict == Verdict.WRONG_ANSWER


def test_practice_uses_correct_incorrect_verdicts() -> None:
    judge = Judge()
    assert judge.grade(SINGLE, ["B"], practice=True).verdict == Verdict.CORRECT
    assert judge.grade(SINGLE, ["A"], practice=True).verdict == Verdict.INCORRECT


def test_empty_selection_is_rejected() -> None:
    with pytest.raises(InvalidSubmission):
        Judge().grade(SINGLE, [])


def test_grading_is_deterministic() -> None:
    judge = Judge()
    for selected in (["B"], ["A"], ["C", "A"], ["D"]):
        for problem in (SINGLE, MULTI):
            assert judge.grade(problem, selected) == judge.grade(problem, list(selected))


def test_evaluate_submission_sets_verdict_and_score() -> None:
    submission = Submission(
        id="sub", user_id="u", problem_id="m", contest_id="c",
        selected_options=["C", "A"], submitted_at=None, verdict=Verdict.WRONG_ANSWER,
    )
    Judge().evaluate_submission(submission, MULTI)
    assert submission.verdict == Verdict.ACCEPTED
    assert submission.score == 250

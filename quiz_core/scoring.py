from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from . import config
from .attempts import clamp_time_spent, utcnow
from .errors import InvalidAttemptState
from .item_stats import outcome_deltas
from .types import (
    ADAPTIVE, COMPLETED, IN_PROGRESS, MANUAL_TYPES, TEXT_TYPES,
    GradingResult, QuestionOutcome, QuizAttempt, QuizDefinition, QuizQuestion,
)
from .validators import normalize_answer, validate_submission

log = logging.getLogger(__name__)


def percentage(score: int, max_score: int) -> int:
    """``round(100 * score / max_score)`` with halves rounded up; 0 when max_score is 0."""
    if max_score <= 0:
        return 0
    return (200 * int(score) + int(max_score)) // (2 * int(max_score))


def _normalize_text(value: str) -> str:
    text = " ".join(str(value).split())
    return text if config.TEXT_ANSWER_CASE_SENSITIVE else text.casefold()


def _is_correct(q: QuizQuestion, value: Any) -> bool:
    expected = q.correct_answer
    if expected is None:
        return False
    if q.type == "MULTIPLE_CHOICE":
        return value == expected
    if q.type == "TRUE_FALSE":
        return value == expected.strip().lower()
    if q.type in TEXT_TYPES:
        return _normalize_text(value) == _normalize_text(expected)
    return False


def _manual_policy(policy: Optional[str]) -> str:
    policy = policy or config.MANUAL_GRADING_POLICY
    if policy not in config.MANUAL_GRADING_POLICIES:
        raise ValueError(
            f"unknown manual grading policy {policy!r}; expected one of {config.MANUAL_GRADING_POLICIES}"
        )
    return policy


def score_question(
    q: QuizQuestion,
    value: Any,
    points: Optional[int] = None,
    policy: Optional[str] = None,
) -> QuestionOutcome:
    """Grade one answer.  ``value`` may be raw; it is normalized first."""
    policy = _manual_policy(policy)
    pts = int(q.points if points is None else points)
    answer = normalize_answer(q, value)

    if q.type in MANUAL_TYPES:
        if policy == "manual":
            return QuestionOutcome(q.id, False, 0, answer, "pending_manual")
        ok = answer is not None
        return QuestionOutcome(q.id, ok, pts if ok else 0, answer, "graded" if ok else "unanswered")

    if answer is None:
        return QuestionOutcome(q.id, False, 0, None, "unanswered")
    ok = _is_correct(q, answer)
    return QuestionOutcome(q.id, ok, pts if ok else 0, answer, "graded")


def grade(
    quiz: QuizDefinition,
    attempt: QuizAttempt,
    submission: Optional[Mapping[str, Any]],
    time_spent_seconds: float = 0,
    now: Optional[datetime] = None,
    policy: Optional[str] = None,
) -> GradingResult:
    """Score an IN_PROGRESS attempt and mark it COMPLETED.

    Only questions in the attempt's start-time snapshot are graded, with the
    snapshotted points, so edits to the quiz after the start cannot move the
    denominator.  A question deleted since the start scores zero.
    Nothing is mutated when the attempt is not IN_PROGRESS or the submission
    is malformed.
    """
    if attempt.status != IN_PROGRESS:
        raise InvalidAttemptState(attempt.id, attempt.status)
    if attempt.mode == ADAPTIVE:
        raise InvalidAttemptState(
            attempt.id, attempt.status,
            message=f"attempt {attempt.id} is adaptive; answers are recorded one at a time",
        )
    if attempt.quiz_id != quiz.id:
        raise InvalidAttemptState(
            attempt.id, attempt.status,
            message=f"attempt {attempt.id} belongs to quiz {attempt.quiz_id}, not {quiz.id}",
        )
    policy = _manual_policy(policy)
    answers, ignored = validate_submission(quiz, attempt, submission)
    by_id = quiz.question_map()

    breakdown: Dict[str, QuestionOutcome] = {}
    for qid, pts in attempt.question_points.items():
        q = by_id.get(qid)
        if q is None:
            breakdown[qid] = QuestionOutcome(qid, False, 0, None, "unanswered")
            continue
        breakdown[qid] = score_question(q, answers.get(qid), points=pts, policy=policy)

    score = sum(o.awarded_points for o in breakdown.values())
    pending = sum(attempt.question_points[qid] for qid, o in breakdown.items() if o.status == "pending_manual")
    gradable = attempt.max_score - pending
    pct = percentage(score, gradable)
    passed = pct >= quiz.passing_score
    spent = clamp_time_spent(quiz, time_spent_seconds)
    deltas = outcome_deltas(breakdown, spent)

    attempt.status = COMPLETED
    attempt.completed_at = now or utcnow()
    attempt.time_spent = spent
    attempt.score = score
    attempt.percentage = pct
    attempt.passed = passed

    log.info(
        "attempt %s graded score=%d/%d pct=%d passed=%s pending_manual=%d",
        attempt.id, score, gradable, pct, passed, pending,
    )
    return GradingResult(
        attempt_id=attempt.id,
        score=score,
        max_score=attempt.max_score,
        gradable_max_score=gradable,
        percentage=pct,
        passed=passed,
        time_spent=spent,
        per_question_breakdown=breakdown,
        pending_manual_points=pending,
        ignored_question_ids=ignored,
        stats_deltas=deltas,
    )


def outcome_to_dict(o: QuestionOutcome) -> Dict[str, Any]:
    return {
        "correct": o.correct,
        "awarded_points": o.awarded_points,
        "submitted_value": o.submitted_value,
        "status": o.status,
    }


def result_to_dict(result: GradingResult) -> Dict[str, Any]:
    return {
        "attempt_id": result.attempt_id,
        "score": result.score,
        "max_score": result.max_score,
        "gradable_max_score": result.gradable_max_score,
        "percentage": result.percentage,
        "passed": result.passed,
        "time_spent": result.time_spent,
        "pending_manual_points": result.pending_manual_points,
        "ignored_question_ids": list(result.ignored_question_ids),
        "per_question_breakdown": {
            qid: outcome_to_dict(o) for qid, o in sorted(result.per_question_breakdown.items())
        },
    }


def result_view(quiz: QuizDefinition, result: GradingResult | Dict[str, Any]) -> Dict[str, Any]:
    """Shape a result for the student according to the quiz's display flags."""
    data = result_to_dict(result) if isinstance(result, GradingResult) else dict(result)
    breakdown = data.pop("per_question_breakdown", {}) or {}
    if not quiz.show_results:
        return data
    by_id = quiz.question_map()
    view: Dict[str, Dict[str, Any]] = {}
    for qid, row in breakdown.items():
        entry = dict(row)
        q = by_id.get(qid)
        if q is not None:
            entry["correct_answer"] = q.correct_answer
            if quiz.show_explanations and q.explanation:
                entry["explanation"] = q.explanation
        view[qid] = entry
    data["per_question_breakdown"] = view
    return data

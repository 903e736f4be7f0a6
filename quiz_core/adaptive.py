"""Adaptive attempts: one question at a time, picked by item information.

An adaptive attempt runs through the same lifecycle as a fixed one
(``start_attempt(..., mode="adaptive")``, then COMPLETED or ABANDONED) and
counts against the same attempt and retry rules.  Each answer is graded on
arrival and appended to ``attempt.adaptive_history``; the ability estimate is
recomputed from that history.  When the stop rule fires, or the pool runs
dry, the attempt completes with its score on the 0-100 ability scale.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config, irt
from .attempts import clamp_time_spent, utcnow
from .errors import InvalidAttemptState, InvalidSubmission, QuizMismatch
from .scoring import score_question
from .types import (
    ADAPTIVE, COMPLETED, IN_PROGRESS, MANUAL_TYPES,
    GradingResult, QuestionOutcome, QuizAttempt, QuizDefinition, QuizQuestion, StatsDelta,
)

log = logging.getLogger(__name__)

PRECISION_REACHED = "PRECISION_REACHED"
NO_MORE_QUESTIONS = "NO_MORE_QUESTIONS"


@dataclass
class AdaptiveStep:
    attempt: QuizAttempt
    ability: irt.AbilityEstimate
    next_question: Optional[QuizQuestion] = None
    result: Optional[GradingResult] = None
    final: Optional[Dict[str, object]] = None

    @property
    def completed(self) -> bool:
        return self.result is not None


def _require_open(attempt: QuizAttempt) -> None:
    if attempt.status != IN_PROGRESS:
        raise InvalidAttemptState(attempt.id, attempt.status)
    if attempt.mode != ADAPTIVE:
        raise InvalidAttemptState(
            attempt.id, attempt.status,
            message=f"attempt {attempt.id} is not adaptive; submit it as a whole",
        )


def pool(quiz: QuizDefinition, attempt: QuizAttempt) -> List[QuizQuestion]:
    """Questions of the attempt's snapshot that can be graded on arrival."""
    by_id = quiz.question_map()
    out = [by_id[qid] for qid in attempt.question_order if qid in by_id and qid in attempt.question_points]
    if config.MANUAL_GRADING_POLICY == "manual":
        out = [q for q in out if q.type not in MANUAL_TYPES]
    return out


def _responses(quiz: QuizDefinition, attempt: QuizAttempt) -> List[irt.Response]:
    by_id = quiz.question_map()
    out: List[irt.Response] = []
    for entry in attempt.adaptive_history:
        q = by_id.get(entry["question_id"])
        params = irt.params_for(q) if q is not None else irt.ItemParams(
            config.IRT_DEFAULT_DIFFICULTY, config.IRT_DEFAULT_DISCRIMINATION, config.IRT_DEFAULT_GUESSING,
        )
        out.append(irt.Response(entry["question_id"], bool(entry["correct"]), params))
    return out


def current_ability(quiz: QuizDefinition, attempt: QuizAttempt) -> irt.AbilityEstimate:
    return irt.estimate_ability(_responses(quiz, attempt), initial_theta=config.ADAPTIVE_INITIAL_ABILITY)


def _answered(attempt: QuizAttempt) -> List[str]:
    return [entry["question_id"] for entry in attempt.adaptive_history]


def next_question(quiz: QuizDefinition, attempt: QuizAttempt) -> AdaptiveStep:
    """The question to show now.  Read-only; safe to call again on resume."""
    _require_open(attempt)
    ability = current_ability(quiz, attempt)
    return AdaptiveStep(attempt, ability, irt.select_next_question(pool(quiz, attempt), ability, _answered(attempt)))


def answer(
    quiz: QuizDefinition,
    attempt: QuizAttempt,
    question_id: str,
    value: Any,
    time_spent_seconds: float = 0,
    now: Optional[datetime] = None,
) -> AdaptiveStep:
    """Record one answer, re-estimate ability and either pick the next
    question or complete the attempt.

    Raises ``QuizMismatch`` for a question outside the adaptive pool and
    ``InvalidSubmission`` for a repeated or malformed answer; the attempt is
    left untouched in both cases.
    """
    _require_open(attempt)
    if attempt.quiz_id != quiz.id:
        raise InvalidAttemptState(
            attempt.id, attempt.status,
            message=f"attempt {attempt.id} belongs to quiz {attempt.quiz_id}, not {quiz.id}",
        )
    q = next((item for item in pool(quiz, attempt) if item.id == question_id), None)
    if q is None:
        raise QuizMismatch(
            f"question {question_id} is not in the adaptive pool of attempt {attempt.id}",
            attempt_id=attempt.id, quiz_id=quiz.id, question_id=question_id,
        )
    if question_id in _answered(attempt):
        raise InvalidSubmission(
            f"question {question_id} was already answered in attempt {attempt.id}",
            attempt_id=attempt.id, question_id=question_id,
        )
    outcome = score_question(q, value, points=attempt.question_points[question_id])
    spent = clamp_time_spent(quiz, time_spent_seconds)

    entry: Dict[str, Any] = {
        "question_id": question_id,
        "correct": outcome.correct,
        "status": outcome.status,
        "answer": outcome.submitted_value,
        "time_spent": spent,
    }
    attempt.adaptive_history.append(entry)
    ability = current_ability(quiz, attempt)
    entry["theta"] = ability.theta
    entry["se"] = ability.se
    log.debug("attempt %s answered %s correct=%s theta=%.3f se=%.3f",
              attempt.id, question_id, outcome.correct, ability.theta, ability.se)

    count = len(attempt.adaptive_history)
    if not irt.should_continue(ability, count, quiz.target_precision):
        return _complete(quiz, attempt, ability, PRECISION_REACHED, now)
    nxt = irt.select_next_question(pool(quiz, attempt), ability, _answered(attempt))
    if nxt is None:
        return _complete(quiz, attempt, ability, NO_MORE_QUESTIONS, now)
    return AdaptiveStep(attempt, ability, nxt)


def _complete(
    quiz: QuizDefinition,
    attempt: QuizAttempt,
    ability: irt.AbilityEstimate,
    reason: str,
    now: Optional[datetime],
) -> AdaptiveStep:
    history = attempt.adaptive_history
    final = irt.final_results(ability, len(history))
    score = int(final["score"])  # type: ignore[arg-type]
    passed = score >= quiz.passing_score
    spent = clamp_time_spent(quiz, sum(entry["time_spent"] for entry in history))
    final["passed"] = passed
    final["termination_reason"] = reason

    breakdown: Dict[str, QuestionOutcome] = {}
    deltas: List[StatsDelta] = []
    for entry in history:
        qid = entry["question_id"]
        ok = bool(entry["correct"])
        breakdown[qid] = QuestionOutcome(
            qid, ok, attempt.question_points.get(qid, 0) if ok else 0, entry.get("answer"), entry.get("status", "graded"),
        )
        share = None if config.TIME_ATTRIBUTION == "omit" else float(entry["time_spent"])
        deltas.append(StatsDelta(question_id=qid, was_correct=ok, time_spent=share))
    deltas.sort(key=lambda d: d.question_id)

    attempt.status = COMPLETED
    attempt.completed_at = now or utcnow()
    attempt.time_spent = spent
    attempt.score = score
    attempt.percentage = score
    attempt.passed = passed
    attempt.termination_reason = reason
    attempt.ability_estimate = ability.theta

    log.info(
        "adaptive attempt %s completed reason=%s answered=%d theta=%.3f score=%d passed=%s",
        attempt.id, reason, len(history), ability.theta, score, passed,
    )
    result = GradingResult(
        attempt_id=attempt.id,
        score=score,
        max_score=attempt.max_score,
        gradable_max_score=attempt.max_score,
        percentage=score,
        passed=passed,
        time_spent=spent,
        per_question_breakdown=breakdown,
        stats_deltas=deltas,
    )
    return AdaptiveStep(attempt, ability, None, result, final)

from __future__ import annotations
import logging
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Tuple

from . import config
from .errors import InvalidQuizDefinition, InvalidSubmission, QuizMismatch
from .types import QUESTION_TYPES, QuizAttempt, QuizDefinition, QuizQuestion

log = logging.getLogger(__name__)

_TRUE_FALSE = ("true", "false")


def question_problems(q: QuizQuestion) -> List[str]:
    out: List[str] = []
    if q.type not in QUESTION_TYPES:
        out.append(f"{q.id}: unknown type {q.type!r}")
        return out
    if not isinstance(q.points, int) or q.points <= 0:
        out.append(f"{q.id}: points must be a positive integer (got {q.points!r})")
    if q.type in ("MULTIPLE_CHOICE", "TRUE_FALSE") and not q.options:
        out.append(f"{q.id}: {q.type} requires options")
    if q.type == "MULTIPLE_CHOICE" and q.correct_answer not in q.options:
        out.append(f"{q.id}: correct_answer is not one of the options")
    if q.type == "TRUE_FALSE" and (q.correct_answer or "").strip().lower() not in _TRUE_FALSE:
        out.append(f"{q.id}: TRUE_FALSE correct_answer must be 'true' or 'false'")
    return out


def quiz_problems(quiz: QuizDefinition) -> List[str]:
    out: List[str] = []
    if not 0 <= quiz.passing_score <= 100:
        out.append(f"passing_score {quiz.passing_score} outside 0..100")
    if quiz.max_attempts < 0:
        out.append(f"max_attempts {quiz.max_attempts} is negative")
    if quiz.time_limit is not None and quiz.time_limit <= 0:
        out.append(f"time_limit {quiz.time_limit} must be positive when set")
    if quiz.target_precision is not None and quiz.target_precision <= 0:
        out.append(f"target_precision {quiz.target_precision} must be positive when set")
    seen: set[str] = set()
    for q in quiz.questions:
        if q.id in seen:
            out.append(f"{q.id}: duplicate question id")
        seen.add(q.id)
        out.extend(question_problems(q))
    return out


def ensure_valid_quiz(quiz: QuizDefinition) -> QuizDefinition:
    problems = quiz_problems(quiz)
    if problems:
        raise InvalidQuizDefinition(
            f"quiz {quiz.id} violates {len(problems)} rule(s)", quiz_id=quiz.id, problems=problems
        )
    return quiz


# ---- submissions: one accepted shape per question type ----

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _reject(q: QuizQuestion, value: Any, expected: str) -> InvalidSubmission:
    return InvalidSubmission(
        f"answer for {q.id} ({q.type}) must be {expected}",
        question_id=q.id, type=q.type, got=type(value).__name__,
    )


def _pairs(q: QuizQuestion, value: Any) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        out: Dict[str, str] = {}
        for pair in value:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise _reject(q, value, "a mapping or a list of [left, right] pairs")
            out[str(pair[0])] = str(pair[1])
        return out
    raise _reject(q, value, "a mapping or a list of [left, right] pairs")


def _point(q: QuizQuestion, value: Any) -> Dict[str, float]:
    if isinstance(value, Mapping) and isinstance(value.get("x"), Real) and isinstance(value.get("y"), Real):
        return {"x": float(value["x"]), "y": float(value["y"])}
    raise _reject(q, value, "an {x, y} point or a list of points")


def normalize_answer(q: QuizQuestion, value: Any) -> Any:
    """Validate one submitted value against its question type.

    Returns the value in canonical form, or ``None`` for a blank answer.
    Raises ``InvalidSubmission`` for a value whose shape does not fit the type.
    """
    if _is_blank(value):
        return None
    t = q.type
    if t == "TRUE_FALSE":
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str) and value.strip().lower() in _TRUE_FALSE:
            return value.strip().lower()
        raise _reject(q, value, "a boolean or 'true'/'false'")
    if t in ("MULTIPLE_CHOICE", "SHORT_ANSWER", "FILL_IN_BLANK", "ESSAY"):
        if not isinstance(value, str):
            raise _reject(q, value, "a string")
        return value
    if t == "MATCHING":
        return _pairs(q, value)
    if t == "DRAG_DROP":
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return list(value)
        return _pairs(q, value)
    if t == "HOTSPOT":
        if isinstance(value, (list, tuple)):
            return [_point(q, v) for v in value]
        return _point(q, value)
    raise _reject(q, value, "an answer for a known question type")


def validate_submission(
    quiz: QuizDefinition,
    attempt: QuizAttempt,
    submission: Optional[Mapping[str, Any]],
    strict: Optional[bool] = None,
) -> Tuple[Dict[str, Any], List[str]]:
    """Normalize a submission for grading.

    Entries for questions outside the attempt's snapshot are dropped and
    returned as ignored ids, or raise ``QuizMismatch`` in strict mode.
    """
    strict = config.STRICT_SUBMISSIONS if strict is None else strict
    by_id = quiz.question_map()
    normalized: Dict[str, Any] = {}
    ignored: List[str] = []
    for qid, value in (submission or {}).items():
        qid = str(qid)
        q = by_id.get(qid)
        if q is None or qid not in attempt.question_points:
            if strict:
                raise QuizMismatch(
                    f"question {qid} does not belong to attempt {attempt.id}",
                    attempt_id=attempt.id, quiz_id=quiz.id, question_id=qid,
                )
            ignored.append(qid)
            continue
        answer = normalize_answer(q, value)
        if answer is not None:
            normalized[qid] = answer
    if ignored:
        log.warning("attempt %s: dropped answers for unknown questions %s", attempt.id, sorted(ignored))
    return normalized, sorted(ignored)

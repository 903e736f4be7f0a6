"""JSON-file persistence for quizzes, attempts, results and item statistics.

The engine in ``quiz_core`` is storage-agnostic; this module supplies the two
contracts it relies on:

* attempt transitions are check-and-set on the stored status, so of two
  racing requests (submit vs. abandon, or a double submit) exactly one wins;
* question statistics are shared across all attempts and are merged as
  increments inside the same lock, keyed by attempt id so that a retried
  completion never counts twice.

A single process-wide lock guards every read-modify-write.  Files are
replaced atomically (write to ``.tmp`` then rename).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from quiz_core.attempts import abandon, start_attempt
from quiz_core.item_stats import apply_deltas, stats_from_dict, stats_to_dict
from quiz_core.quiz_bank import load_quiz as _load_quiz_file, quiz_to_dict
from quiz_core.scoring import grade, result_to_dict
from quiz_core import adaptive
from quiz_core.types import STANDARD, AttemptMode, GradingResult, QuestionStats, QuizAttempt, QuizDefinition


DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
QUIZZES_DIR = DATA_ROOT / "quizzes"
RESULTS_DIR = DATA_ROOT / "results"
ATTEMPTS_PATH = DATA_ROOT / "attempts.json"
STATS_PATH = DATA_ROOT / "stats.json"

_LOCK = threading.Lock()

log = logging.getLogger(__name__)


def _ensure_dirs() -> None:
    DATA_ROOT.mkdir(parents=True, exist_ok=True)
    QUIZZES_DIR.mkdir(parents=True, exist_ok=True)
    RESULTS_DIR.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


# ---- attempts (de)serialization ----

def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def attempt_to_dict(a: QuizAttempt) -> Dict[str, Any]:
    return {
        "id": a.id,
        "quiz_id": a.quiz_id,
        "student_id": a.student_id,
        "attempt_number": a.attempt_number,
        "started_at": a.started_at.isoformat(),
        "completed_at": a.completed_at.isoformat() if a.completed_at else None,
        "status": a.status,
        "time_spent": a.time_spent,
        "score": a.score,
        "max_score": a.max_score,
        "percentage": a.percentage,
        "passed": a.passed,
        "question_points": dict(a.question_points),
        "question_order": list(a.question_order),
        "abandon_reason": a.abandon_reason,
        "mode": a.mode,
        "adaptive_history": [dict(entry) for entry in a.adaptive_history],
        "termination_reason": a.termination_reason,
        "ability_estimate": a.ability_estimate,
    }


def attempt_from_dict(raw: Mapping[str, Any]) -> QuizAttempt:
    return QuizAttempt(
        id=raw["id"],
        quiz_id=raw["quiz_id"],
        student_id=raw["student_id"],
        attempt_number=int(raw["attempt_number"]),
        started_at=_dt(raw["started_at"]),  # type: ignore[arg-type]
        completed_at=_dt(raw.get("completed_at")),
        status=raw["status"],
        time_spent=int(raw.get("time_spent") or 0),
        score=raw.get("score"),
        max_score=int(raw.get("max_score") or 0),
        percentage=raw.get("percentage"),
        passed=raw.get("passed"),
        question_points={k: int(v) for k, v in (raw.get("question_points") or {}).items()},
        question_order=list(raw.get("question_order") or []),
        abandon_reason=raw.get("abandon_reason"),
        mode=raw.get("mode") or STANDARD,
        adaptive_history=[dict(entry) for entry in raw.get("adaptive_history") or []],
        termination_reason=raw.get("termination_reason"),
        ability_estimate=raw.get("ability_estimate"),
    )


def _load_attempts() -> Dict[str, Dict[str, Any]]:
    return _read_json(ATTEMPTS_PATH, {})


def _store_attempt(attempts: Dict[str, Dict[str, Any]], attempt: QuizAttempt) -> None:
    attempts[attempt.id] = attempt_to_dict(attempt)
    _write_json(ATTEMPTS_PATH, attempts)


def _prior(attempts: Dict[str, Dict[str, Any]], quiz_id: str, student_id: str) -> List[QuizAttempt]:
    out = [
        attempt_from_dict(raw)
        for raw in attempts.values()
        if raw.get("quiz_id") == quiz_id and raw.get("student_id") == student_id
    ]
    out.sort(key=lambda a: a.attempt_number)
    return out


# ---- statistics ----

def _load_stats() -> Dict[str, Any]:
    data = _read_json(STATS_PATH, {})
    data.setdefault("questions", {})
    applied = data.get("applied_attempts") or {}
    if isinstance(applied, list):
        # older files kept a plain list of attempt ids
        applied = {aid: None for aid in applied}
    data["applied_attempts"] = applied
    return data


def _apply_result_stats(result: GradingResult) -> bool:
    """Merge a result's deltas once per attempt id.  Caller holds ``_LOCK``.

    ``applied_attempts`` maps attempt id -> number of deltas merged.
    """
    data = _load_stats()
    if result.attempt_id in data["applied_attempts"]:
        log.info("stats for attempt %s already applied, skipping", result.attempt_id)
        return False
    current = {qid: stats_from_dict(raw) for qid, raw in data["questions"].items()}
    apply_deltas(current, result.stats_deltas)
    data["questions"] = {qid: stats_to_dict(st) for qid, st in current.items()}
    data["applied_attempts"][result.attempt_id] = len(result.stats_deltas)
    _write_json(STATS_PATH, data)
    return True


def question_stats(question_id: str) -> Optional[QuestionStats]:
    raw = _load_stats()["questions"].get(question_id)
    return None if raw is None else stats_from_dict(raw)


# ---- quizzes ----

def save_quiz(quiz: QuizDefinition) -> None:
    _ensure_dirs()
    _write_json(QUIZZES_DIR / f"{quiz.id}.json", quiz_to_dict(quiz))


def load_quiz(quiz_id: str) -> Optional[QuizDefinition]:
    """Quiz definition with the live shared statistics merged in."""
    path = QUIZZES_DIR / f"{quiz_id}.json"
    if not path.exists():
        return None
    quiz = _load_quiz_file(path)
    live = _load_stats()["questions"]
    for q in quiz.questions:
        if q.id in live:
            q.stats = stats_from_dict(live[q.id])
    return quiz


# ---- attempt transitions ----

def get_attempt(attempt_id: str) -> Optional[QuizAttempt]:
    raw = _load_attempts().get(attempt_id)
    return None if raw is None else attempt_from_dict(raw)


def attempts_for(quiz_id: str, student_id: str) -> List[QuizAttempt]:
    return _prior(_load_attempts(), quiz_id, student_id)


def create_attempt(
    quiz: QuizDefinition,
    student_id: str,
    now: Optional[datetime] = None,
    mode: AttemptMode = STANDARD,
) -> QuizAttempt:
    """Eligibility check and insert under one lock; concurrent starts serialize."""
    _ensure_dirs()
    with _LOCK:
        attempts = _load_attempts()
        attempt = start_attempt(quiz, student_id, _prior(attempts, quiz.id, student_id), now=now, mode=mode)
        _store_attempt(attempts, attempt)
    return attempt


def complete_attempt(
    quiz: QuizDefinition,
    attempt_id: str,
    answers: Optional[Mapping[str, Any]],
    time_spent_seconds: float,
    now: Optional[datetime] = None,
) -> Optional[GradingResult]:
    """Grade and persist; ``None`` when the attempt does not exist.

    Stats are merged first (idempotent per attempt id), then the result, then
    the status flip.  A crash part-way leaves the attempt IN_PROGRESS and a
    retry completes it without double-counting statistics.
    """
    _ensure_dirs()
    with _LOCK:
        attempts = _load_attempts()
        raw = attempts.get(attempt_id)
        if raw is None:
            return None
        attempt = attempt_from_dict(raw)
        result = grade(quiz, attempt, answers, time_spent_seconds, now=now)
        _apply_result_stats(result)
        _write_json(RESULTS_DIR / f"{attempt_id}.json", result_to_dict(result))
        _store_attempt(attempts, attempt)
    return result


def abandon_attempt(
    quiz: QuizDefinition,
    attempt_id: str,
    reason: str,
    now: Optional[datetime] = None,
) -> Optional[QuizAttempt]:
    _ensure_dirs()
    with _LOCK:
        attempts = _load_attempts()
        raw = attempts.get(attempt_id)
        if raw is None:
            return None
        attempt = abandon(attempt_from_dict(raw), quiz, reason, now=now)
        _store_attempt(attempts, attempt)
    return attempt


def adaptive_answer(
    quiz: QuizDefinition,
    attempt_id: str,
    question_id: str,
    value: Any,
    time_spent_seconds: float = 0,
    now: Optional[datetime] = None,
) -> Optional[adaptive.AdaptiveStep]:
    """Record one adaptive answer; ``None`` when the attempt does not exist.

    The final answer completes the attempt in the same lock, with the same
    stats-then-result-then-status ordering as ``complete_attempt``.
    """
    _ensure_dirs()
    with _LOCK:
        attempts = _load_attempts()
        raw = attempts.get(attempt_id)
        if raw is None:
            return None
        attempt = attempt_from_dict(raw)
        step = adaptive.answer(quiz, attempt, question_id, value, time_spent_seconds, now=now)
        if step.result is not None:
            _apply_result_stats(step.result)
            payload = result_to_dict(step.result)
            payload["adaptive"] = step.final
            _write_json(RESULTS_DIR / f"{attempt_id}.json", payload)
        _store_attempt(attempts, attempt)
    return step


def load_result(attempt_id: str) -> Optional[Dict[str, Any]]:
    path = RESULTS_DIR / f"{attempt_id}.json"
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))

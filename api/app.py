from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query, Response
from pydantic import BaseModel, Field
import logging, typing as t

# ---- Engine imports ----
from quiz_core.attempts import deadline, eligibility, is_expired
from quiz_core.audit_export import to_json as breakdown_to_json, to_csv as breakdown_to_csv
from quiz_core.config import BREAKDOWN_EXPORT_ENABLED
from quiz_core.errors import (
    AttemptAlreadyInProgress,
    AttemptLimitExceeded,
    InvalidAttemptState,
    InvalidQuizDefinition,
    InvalidSubmission,
    QuizEngineError,
    QuizMismatch,
    RetryNotAllowed,
)
from quiz_core import adaptive
from quiz_core.item_stats import stats_to_dict
from quiz_core.scoring import result_view
from quiz_core.types import ADAPTIVE, QuizDefinition
from quiz_core.validators import ensure_valid_quiz
from .storage import (
    abandon_attempt,
    adaptive_answer,
    attempt_to_dict,
    attempts_for,
    complete_attempt,
    get_attempt,
    load_quiz,
    load_result,
    question_stats,
    create_attempt,
)

log = logging.getLogger(__name__)

app = FastAPI(title="Quiz Attempt API")

_STATUS: dict[type, int] = {
    AttemptAlreadyInProgress: 409,
    InvalidAttemptState: 409,
    AttemptLimitExceeded: 403,
    RetryNotAllowed: 403,
    InvalidSubmission: 422,
    QuizMismatch: 422,
    InvalidQuizDefinition: 500,
}


def _http_error(exc: QuizEngineError) -> HTTPException:
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 400)
    log.info("rejected %s: %s", exc.code, exc.message)
    return HTTPException(status, exc.to_dict())


# ---- Schemas ----
class StartReq(BaseModel):
    student_id: str

class SubmitReq(BaseModel):
    answers: dict[str, t.Any] = Field(default_factory=dict)
    time_spent_seconds: float = Field(default=0, allow_inf_nan=False)

class AbandonReq(BaseModel):
    reason: str = "timeout"

class AdaptiveAnswerReq(BaseModel):
    question_id: str
    answer: t.Any = None
    time_spent_seconds: float = Field(default=0, allow_inf_nan=False)

# ---- Helpers ----
def _quiz_or_404(quiz_id: str) -> QuizDefinition:
    quiz = load_quiz(quiz_id)
    if not quiz:
        raise HTTPException(404, "quiz not found")
    try:
        return ensure_valid_quiz(quiz)
    except InvalidQuizDefinition as exc:
        raise _http_error(exc)


def _attempt_or_404(attempt_id: str):
    attempt = get_attempt(attempt_id)
    if not attempt:
        raise HTTPException(404, "attempt not found")
    return attempt


def _serialize_question(q) -> dict[str, t.Any]:
    return {
        "id": q.id,
        "type": q.type,
        "question": q.question,
        "options": list(q.options),
        "points": q.points,
        "hints": list(q.hints),
    }


# ---- Health ----
@app.get("/health")
def health():
    return {"status": "ok", "service": "quiz-attempt-api"}


# ---- Attempt lifecycle ----
@app.get("/quizzes/{quiz_id}/eligibility")
def quiz_eligibility(quiz_id: str, student_id: str = Query(...)):
    quiz = _quiz_or_404(quiz_id)
    return eligibility(quiz, student_id, attempts_for(quiz_id, student_id))


@app.post("/quizzes/{quiz_id}/attempts")
def start(quiz_id: str, req: StartReq):
    quiz = _quiz_or_404(quiz_id)
    try:
        attempt = create_attempt(quiz, req.student_id)
    except QuizEngineError as exc:
        raise _http_error(exc)
    due = deadline(quiz, attempt)
    return {
        "attempt_id": attempt.id,
        "attempt_number": attempt.attempt_number,
        "max_score": attempt.max_score,
        "started_at": attempt.started_at.isoformat(),
        "deadline": due.isoformat() if due else None,
        "question_order": attempt.question_order,
    }


@app.get("/attempts/{attempt_id}")
def read_attempt(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    quiz = load_quiz(attempt.quiz_id)
    payload = attempt_to_dict(attempt)
    payload["expired"] = bool(quiz and is_expired(quiz, attempt))
    return payload


@app.get("/attempts/{attempt_id}/questions")
def attempt_questions(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    quiz = _quiz_or_404(attempt.quiz_id)
    by_id = quiz.question_map()
    return {"questions": [_serialize_question(by_id[qid]) for qid in attempt.question_order if qid in by_id]}


@app.post("/attempts/{attempt_id}/submit")
def submit(attempt_id: str, req: SubmitReq):
    attempt = _attempt_or_404(attempt_id)
    quiz = _quiz_or_404(attempt.quiz_id)
    try:
        result = complete_attempt(quiz, attempt_id, req.answers, req.time_spent_seconds)
    except QuizEngineError as exc:
        raise _http_error(exc)
    if result is None:
        raise HTTPException(404, "attempt not found")
    return result_view(quiz, result)


@app.post("/attempts/{attempt_id}/abandon")
def abandon_endpoint(attempt_id: str, req: AbandonReq | None = None):
    attempt = _attempt_or_404(attempt_id)
    quiz = _quiz_or_404(attempt.quiz_id)
    try:
        updated = abandon_attempt(quiz, attempt_id, (req or AbandonReq()).reason)
    except QuizEngineError as exc:
        raise _http_error(exc)
    if updated is None:
        raise HTTPException(404, "attempt not found")
    return attempt_to_dict(updated)


@app.get("/attempts/{attempt_id}/result")
def read_result(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    result = load_result(attempt_id)
    if not result:
        raise HTTPException(404, "result not found")
    quiz = _quiz_or_404(attempt.quiz_id)
    return result_view(quiz, result)


@app.get("/attempts/{attempt_id}/breakdown.json")
def get_breakdown_json(attempt_id: str):
    if not BREAKDOWN_EXPORT_ENABLED:
        raise HTTPException(404, "breakdown export disabled")

    result = load_result(attempt_id)
    if not result:
        raise HTTPException(404, "result not found")
    return {"attempt_id": attempt_id, **breakdown_to_json(result)}


@app.get("/attempts/{attempt_id}/breakdown.csv")
def get_breakdown_csv(attempt_id: str):
    if not BREAKDOWN_EXPORT_ENABLED:
        raise HTTPException(404, "breakdown export disabled")

    result = load_result(attempt_id)
    if not result:
        raise HTTPException(404, "result not found")
    filename = f"{attempt_id}_breakdown.csv"
    return Response(
        content=breakdown_to_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{filename}\""},
    )


# ---- Item statistics ----
@app.get("/quizzes/{quiz_id}/questions/{question_id}/stats")
def get_question_stats(quiz_id: str, question_id: str):
    quiz = _quiz_or_404(quiz_id)
    q = quiz.question_map().get(question_id)
    if q is None:
        raise HTTPException(404, "question not found")
    stats = question_stats(question_id) or q.stats
    return {"quiz_id": quiz_id, "question_id": question_id, **stats_to_dict(stats)}


# ---- Adaptive ----
def _adaptive_body(step) -> dict[str, t.Any]:
    body: dict[str, t.Any] = {
        "attempt_id": step.attempt.id,
        "completed": step.completed,
        "ability": step.ability.theta,
        "se": step.ability.se,
        "questions_answered": len(step.attempt.adaptive_history),
        "next_question": _serialize_question(step.next_question) if step.next_question else None,
    }
    if step.completed:
        body["results"] = step.final
    return body


@app.post("/quizzes/{quiz_id}/adaptive/attempts")
def adaptive_start(quiz_id: str, req: StartReq):
    quiz = _quiz_or_404(quiz_id)
    try:
        attempt = create_attempt(quiz, req.student_id, mode=ADAPTIVE)
        step = adaptive.next_question(quiz, attempt)
    except QuizEngineError as exc:
        raise _http_error(exc)
    body = _adaptive_body(step)
    body["attempt_number"] = attempt.attempt_number
    body["started_at"] = attempt.started_at.isoformat()
    return body


@app.get("/attempts/{attempt_id}/adaptive/next")
def adaptive_next(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    quiz = _quiz_or_404(attempt.quiz_id)
    try:
        step = adaptive.next_question(quiz, attempt)
    except QuizEngineError as exc:
        raise _http_error(exc)
    return _adaptive_body(step)


@app.post("/attempts/{attempt_id}/adaptive/answer")
def adaptive_answer_endpoint(attempt_id: str, req: AdaptiveAnswerReq):
    attempt = _attempt_or_404(attempt_id)
    quiz = _quiz_or_404(attempt.quiz_id)
    try:
        step = adaptive_answer(quiz, attempt_id, req.question_id, req.answer, req.time_spent_seconds)
    except QuizEngineError as exc:
        raise _http_error(exc)
    if step is None:
        raise HTTPException(404, "attempt not found")
    return _adaptive_body(step)

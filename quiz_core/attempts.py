"""Attempt lifecycle: NONE -> IN_PROGRESS -> COMPLETED | ABANDONED.

``start_attempt`` and ``abandon`` only decide and apply transitions on
in-memory records.  Making a transition stick under concurrency is the
storage layer's job: it must persist them with a check-and-set on the
current status (see ``api.storage``).
"""
from __future__ import annotations

import logging
import math
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from . import config
from .errors import (
    AttemptAlreadyInProgress,
    AttemptLimitExceeded,
    InvalidAttemptState,
    InvalidSubmission,
    RetryNotAllowed,
)
from .types import (
    ABANDONED, ADAPTIVE, COMPLETED, IN_PROGRESS, STANDARD,
    AttemptMode, QuizAttempt, QuizDefinition,
)

log = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _counted(prior: Sequence[QuizAttempt]) -> int:
    return sum(1 for a in prior if a.status != ABANDONED)


def question_order(quiz: QuizDefinition, attempt_id: str) -> List[str]:
    """Display order for one attempt; grading never depends on it."""
    ids = [q.id for q in quiz.ordered_questions()]
    if quiz.shuffle_questions:
        seed = f"{config.SHUFFLE_SEED}:{attempt_id}" if config.SHUFFLE_SEED else attempt_id
        random.Random(seed).shuffle(ids)
    return ids


def _check_eligible(quiz: QuizDefinition, student_id: str, prior: Sequence[QuizAttempt]) -> None:
    if any(a.status == IN_PROGRESS for a in prior):
        raise AttemptAlreadyInProgress(
            f"student {student_id} already has an attempt in progress for quiz {quiz.id}",
            quiz_id=quiz.id, student_id=student_id,
        )
    if not quiz.allow_retry and any(a.status == COMPLETED for a in prior):
        raise RetryNotAllowed(
            f"quiz {quiz.id} does not allow retries",
            quiz_id=quiz.id, student_id=student_id,
        )
    used = _counted(prior)
    if quiz.max_attempts > 0 and used >= quiz.max_attempts:
        raise AttemptLimitExceeded(
            f"student {student_id} used {used} of {quiz.max_attempts} attempts on quiz {quiz.id}",
            quiz_id=quiz.id, student_id=student_id, used=used, max_attempts=quiz.max_attempts,
        )


def eligibility(quiz: QuizDefinition, student_id: str, prior: Sequence[QuizAttempt]) -> Dict[str, object]:
    used = _counted(prior)
    remaining: Optional[int] = None
    if quiz.max_attempts > 0:
        remaining = max(0, quiz.max_attempts - used)
    reason: Optional[str] = None
    try:
        _check_eligible(quiz, student_id, prior)
    except (AttemptAlreadyInProgress, RetryNotAllowed, AttemptLimitExceeded) as exc:
        reason = exc.code
    return {
        "quiz_id": quiz.id,
        "student_id": student_id,
        "attempts_used": used,
        "attempts_remaining": remaining,
        "can_start": reason is None,
        "reason": reason,
    }


def start_attempt(
    quiz: QuizDefinition,
    student_id: str,
    prior_attempts: Sequence[QuizAttempt],
    now: Optional[datetime] = None,
    attempt_id: Optional[str] = None,
    mode: AttemptMode = STANDARD,
) -> QuizAttempt:
    """Open a new attempt, or raise the rule that forbids it.

    ``prior_attempts`` is every earlier attempt by this student on this quiz,
    fixed and adaptive alike.  ABANDONED attempts never count against
    ``max_attempts`` and never block.  Adaptive attempts are scored on the
    ability scale, so their ``max_score`` is ``ADAPTIVE_MAX_SCORE``.
    """
    prior = list(prior_attempts)
    _check_eligible(quiz, student_id, prior)

    aid = attempt_id or str(uuid.uuid4())
    points = {q.id: int(q.points) for q in quiz.questions}
    attempt = QuizAttempt(
        id=aid,
        quiz_id=quiz.id,
        student_id=student_id,
        attempt_number=len(prior) + 1,
        started_at=now or utcnow(),
        status=IN_PROGRESS,
        max_score=config.ADAPTIVE_MAX_SCORE if mode == ADAPTIVE else sum(points.values()),
        question_points=points,
        question_order=question_order(quiz, aid),
        mode=mode,
    )
    log.info(
        "attempt %s started quiz=%s student=%s number=%d mode=%s max_score=%d",
        aid, quiz.id, student_id, attempt.attempt_number, mode, attempt.max_score,
    )
    return attempt


def time_limit_seconds(quiz: QuizDefinition) -> Optional[int]:
    return None if quiz.time_limit is None else int(quiz.time_limit) * 60


def clamp_time_spent(quiz: QuizDefinition, seconds: float) -> int:
    """Seconds clamped to ``[0, time_limit * 60]``, then rounded half up."""
    spent = float(seconds or 0)
    if not math.isfinite(spent):
        raise InvalidSubmission(
            f"time spent must be a finite number of seconds (got {seconds!r})",
            time_spent_seconds=str(seconds),
        )
    limit = time_limit_seconds(quiz)
    spent = max(0.0, spent if limit is None else min(spent, float(limit)))
    return int(math.floor(spent + 0.5))


def deadline(quiz: QuizDefinition, attempt: QuizAttempt) -> Optional[datetime]:
    limit = time_limit_seconds(quiz)
    return None if limit is None else attempt.started_at + timedelta(seconds=limit)


def is_expired(quiz: QuizDefinition, attempt: QuizAttempt, now: Optional[datetime] = None) -> bool:
    """True when an IN_PROGRESS attempt has outlived its time limit."""
    due = deadline(quiz, attempt)
    if due is None or attempt.status != IN_PROGRESS:
        return False
    return (now or utcnow()) >= due


def abandon(
    attempt: QuizAttempt,
    quiz: QuizDefinition,
    reason: str,
    now: Optional[datetime] = None,
) -> QuizAttempt:
    if attempt.status != IN_PROGRESS:
        raise InvalidAttemptState(attempt.id, attempt.status)
    now = now or utcnow()
    limit = time_limit_seconds(quiz)
    if limit is not None:
        attempt.time_spent = limit
    else:
        attempt.time_spent = max(0, int((now - attempt.started_at).total_seconds()))
    attempt.status = ABANDONED
    attempt.completed_at = now
    attempt.abandon_reason = reason
    log.info("attempt %s abandoned reason=%s time_spent=%d", attempt.id, reason, attempt.time_spent)
    return attempt

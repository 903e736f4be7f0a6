from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quiz_core.attempts import start_attempt
from quiz_core.types import QuizAttempt, QuizDefinition, QuizQuestion


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def build_quiz(
    *,
    quiz_id: str = "quiz-1",
    passing_score: int = 70,
    time_limit: int | None = None,
    allow_retry: bool = True,
    max_attempts: int = 0,
    shuffle_questions: bool = False,
    show_results: bool = True,
    show_explanations: bool = False,
    questions: list[QuizQuestion] | None = None,
) -> QuizDefinition:
    """Small deterministic quiz; the default has one question of each auto-graded type."""

    if questions is None:
        questions = [
            QuizQuestion(
                id="q1", type="MULTIPLE_CHOICE", question="2 + 2?",
                options=["3", "4", "5"], correct_answer="4", points=2, order_index=0,
                explanation="Basic addition.",
            ),
            QuizQuestion(
                id="q2", type="TRUE_FALSE", question="The sky is green.",
                options=["true", "false"], correct_answer="false", points=1, order_index=1,
            ),
            QuizQuestion(
                id="q3", type="SHORT_ANSWER", question="Capital of France?",
                correct_answer="Paris", points=3, order_index=2,
            ),
        ]
    return QuizDefinition(
        id=quiz_id,
        title="Sample quiz",
        passing_score=passing_score,
        time_limit=time_limit,
        allow_retry=allow_retry,
        max_attempts=max_attempts,
        shuffle_questions=shuffle_questions,
        show_results=show_results,
        show_explanations=show_explanations,
        questions=questions,
    )


def mc(qid: str, points: int = 1, correct: str = "A", order_index: int = 0, **extra) -> QuizQuestion:
    return QuizQuestion(
        id=qid, type="MULTIPLE_CHOICE", question=f"Question {qid}",
        options=["A", "B", "C", "D"], correct_answer=correct, points=points,
        order_index=order_index, **extra,
    )


def essay(qid: str, points: int = 5, order_index: int = 0) -> QuizQuestion:
    return QuizQuestion(id=qid, type="ESSAY", question=f"Discuss {qid}", points=points, order_index=order_index)


def begin(quiz: QuizDefinition, student_id: str = "s1", prior: list[QuizAttempt] | None = None,
          attempt_id: str = "a1") -> QuizAttempt:
    return start_attempt(quiz, student_id, prior or [], now=T0, attempt_id=attempt_id)


@pytest.fixture
def sample_quiz() -> QuizDefinition:
    return build_quiz()

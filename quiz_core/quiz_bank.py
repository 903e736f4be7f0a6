"""Load and dump quiz definitions.

Quiz files are JSON objects shaped like the rows the authoring side stores:
quiz settings at the top level and a ``questions`` list.  Both snake_case and
the camelCase spellings used by the web client are accepted on input; output
is always snake_case.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .types import QuestionStats, QuizDefinition, QuizQuestion

_ALIASES: Dict[str, tuple[str, ...]] = {
    "passing_score": ("passingScore",),
    "time_limit": ("timeLimit",),
    "allow_retry": ("allowRetry",),
    "max_attempts": ("maxAttempts",),
    "shuffle_questions": ("shuffleQuestions",),
    "show_results": ("showResults",),
    "show_explanations": ("showExplanations",),
    "target_precision": ("targetPrecision",),
    "correct_answer": ("correctAnswer",),
    "order_index": ("orderIndex",),
    "times_asked": ("timesAsked",),
    "times_correct": ("timesCorrect",),
    "average_time_spent": ("averageTimeSpent",),
    "success_rate": ("successRate",),
    "irt_difficulty": ("irtDifficulty",),
    "irt_discrimination": ("irtDiscrimination",),
    "irt_guessing": ("irtGuessing",),
}


def _get(raw: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if key in raw:
        return raw[key]
    for alias in _ALIASES.get(key, ()):
        if alias in raw:
            return raw[alias]
    return default


def _str_list(value: Any) -> List[str]:
    """Options and hints arrive as lists or as JSON-encoded strings."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        return [str(v) for v in parsed] if isinstance(parsed, list) else [value]
    return [str(v) for v in value]


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _answer_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def question_from_dict(raw: Mapping[str, Any], index: int = 0) -> QuizQuestion:
    rate = _get(raw, "success_rate")
    stats = QuestionStats(
        times_asked=int(_get(raw, "times_asked", 0) or 0),
        times_correct=int(_get(raw, "times_correct", 0) or 0),
        average_time_spent=float(_get(raw, "average_time_spent", 0.0) or 0.0),
        success_rate=None if rate is None else float(rate),
    )
    return QuizQuestion(
        id=str(raw["id"]),
        type=str(raw["type"]).upper(),  # type: ignore[arg-type]
        question=str(raw.get("question") or raw.get("text") or ""),
        options=_str_list(raw.get("options")),
        correct_answer=_answer_text(_get(raw, "correct_answer")),
        points=1 if raw.get("points") is None else int(raw["points"]),
        explanation=raw.get("explanation"),
        hints=_str_list(raw.get("hints")),
        order_index=int(_get(raw, "order_index", index)),
        stats=stats,
        irt_difficulty=_opt_float(_get(raw, "irt_difficulty")),
        irt_discrimination=_opt_float(_get(raw, "irt_discrimination")),
        irt_guessing=_opt_float(_get(raw, "irt_guessing")),
    )


def quiz_from_dict(raw: Mapping[str, Any]) -> QuizDefinition:
    time_limit = _get(raw, "time_limit")
    questions = [question_from_dict(q, idx) for idx, q in enumerate(raw.get("questions") or [])]
    return QuizDefinition(
        id=str(raw["id"]),
        title=str(raw.get("title", "")),
        passing_score=int(_get(raw, "passing_score", 70)),
        time_limit=None if time_limit in (None, 0, "") else int(time_limit),
        allow_retry=bool(_get(raw, "allow_retry", True)),
        max_attempts=int(_get(raw, "max_attempts", 0) or 0),
        shuffle_questions=bool(_get(raw, "shuffle_questions", False)),
        show_results=bool(_get(raw, "show_results", True)),
        show_explanations=bool(_get(raw, "show_explanations", False)),
        target_precision=_opt_float(_get(raw, "target_precision")),
        questions=questions,
    )


def question_to_dict(q: QuizQuestion) -> Dict[str, Any]:
    return {
        "id": q.id,
        "type": q.type,
        "question": q.question,
        "options": list(q.options),
        "correct_answer": q.correct_answer,
        "points": q.points,
        "explanation": q.explanation,
        "hints": list(q.hints),
        "order_index": q.order_index,
        "times_asked": q.stats.times_asked,
        "times_correct": q.stats.times_correct,
        "average_time_spent": q.stats.average_time_spent,
        "success_rate": q.stats.success_rate,
        "irt_difficulty": q.irt_difficulty,
        "irt_discrimination": q.irt_discrimination,
        "irt_guessing": q.irt_guessing,
    }


def quiz_to_dict(quiz: QuizDefinition) -> Dict[str, Any]:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "passing_score": quiz.passing_score,
        "time_limit": quiz.time_limit,
        "allow_retry": quiz.allow_retry,
        "max_attempts": quiz.max_attempts,
        "shuffle_questions": quiz.shuffle_questions,
        "show_results": quiz.show_results,
        "show_explanations": quiz.show_explanations,
        "target_precision": quiz.target_precision,
        "questions": [question_to_dict(q) for q in quiz.ordered_questions()],
    }


def max_score(quiz: QuizDefinition) -> int:
    return sum(int(q.points) for q in quiz.questions)


def load_quiz(path: str | Path) -> QuizDefinition:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return quiz_from_dict(raw)


def load_quizzes(directory: str | Path) -> List[QuizDefinition]:
    root = Path(directory)
    if not root.is_dir():
        return []
    return [load_quiz(p) for p in sorted(root.glob("*.json"))]

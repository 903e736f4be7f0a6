from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Iterable

from . import config
from .quiz_bank import load_quiz, max_score
from .types import MANUAL_TYPES, QUESTION_TYPES, QuizDefinition
from .validators import quiz_problems


def _blank_counts() -> dict[str, int]:
    return {t: 0 for t in QUESTION_TYPES}


def audit_quiz(quiz: QuizDefinition) -> dict[str, object]:
    counts = _blank_counts()
    points = _blank_counts()
    for q in quiz.questions:
        if q.type in counts:
            counts[q.type] += 1
            points[q.type] += int(q.points)

    warnings: list[str] = list(quiz_problems(quiz))

    total = max_score(quiz)
    manual_points = sum(points[t] for t in MANUAL_TYPES)
    manual_share = manual_points / total if total > 0 else 0.0
    if config.MANUAL_GRADING_POLICY == "manual" and manual_share > config.AUDIT_MANUAL_SHARE_MAX:
        warnings.append(
            f"{manual_share:.0%} of points need manual grading (>{config.AUDIT_MANUAL_SHARE_MAX:.0%})"
        )
    if total == 0:
        warnings.append("quiz has no points to score")

    items: dict[str, dict[str, object]] = {}
    for q in quiz.ordered_questions():
        st = q.stats
        items[q.id] = {
            "type": q.type,
            "points": q.points,
            "times_asked": st.times_asked,
            "success_rate": st.success_rate,
            "average_time_spent": round(st.average_time_spent, 2),
        }
        if st.times_asked < config.AUDIT_MIN_EXPOSURES or st.success_rate is None:
            continue
        if st.success_rate < config.AUDIT_SUCCESS_LOW:
            warnings.append(f"{q.id} success rate {st.success_rate:.2f} below {config.AUDIT_SUCCESS_LOW:.2f}")
        elif st.success_rate > config.AUDIT_SUCCESS_HIGH:
            warnings.append(f"{q.id} success rate {st.success_rate:.2f} above {config.AUDIT_SUCCESS_HIGH:.2f}")

    return {
        "quiz_id": quiz.id,
        "type_counts": counts,
        "type_points": points,
        "max_score": total,
        "manual_share": round(manual_share, 4),
        "items": items,
        "warnings": warnings,
    }


def _format_row(label: str, keys: Iterable[str], data: dict[str, int]) -> str:
    parts = [label]
    for key in keys:
        if data.get(key):
            parts.append(f"{key}:{data[key]:3d}")
    return "  ".join(parts)


def print_report(summary: dict[str, object]) -> None:
    print(f"=== Quiz {summary['quiz_id']} ===")
    print("  " + _format_row("count ", QUESTION_TYPES, summary["type_counts"]))  # type: ignore[arg-type]
    print("  " + _format_row("points", QUESTION_TYPES, summary["type_points"]))  # type: ignore[arg-type]
    print(f"  max_score: {summary['max_score']}  manual_share: {summary['manual_share']}")

    warnings: list[str] = summary["warnings"]  # type: ignore[assignment]
    if warnings:
        print("\nWarnings:")
        for msg in warnings:
            print(f" - {msg}")
    else:
        print("\nNo warnings.")


def write_summary(summary: dict[str, object], path: Path) -> str:
    text = json.dumps(summary, indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    return text


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("usage: python -m quiz_core.audit_quiz <quiz.json> [summary.json]")
        return 1
    quiz = load_quiz(args[0])
    summary = audit_quiz(quiz)
    print_report(summary)
    if len(args) > 1:
        write_summary(summary, Path(args[1]))
    return 2 if summary["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())

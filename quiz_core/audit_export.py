"""Helpers to export a graded attempt's per-question breakdown in JSON/CSV formats."""
from __future__ import annotations

from typing import Any, Dict, List
import csv
import io
import json

from .scoring import result_to_dict
from .types import GradingResult

_FIELDS: tuple[str, ...] = (
    "attempt_id",
    "question_id",
    "status",
    "correct",
    "awarded_points",
    "submitted_value",
)


def _rows(result: GradingResult | Dict[str, Any]) -> List[Dict[str, Any]]:
    if isinstance(result, GradingResult):
        result = result_to_dict(result)
    attempt_id = str(result.get("attempt_id") or "")
    out: List[Dict[str, Any]] = []
    for qid, row in sorted((result.get("per_question_breakdown") or {}).items()):
        row = row or {}
        value = row.get("submitted_value")
        out.append({
            "attempt_id": attempt_id,
            "question_id": str(qid),
            "status": str(row.get("status") or ""),
            "correct": bool(row.get("correct")),
            "awarded_points": int(row.get("awarded_points") or 0),
            "submitted_value": "" if value is None else (value if isinstance(value, str) else json.dumps(value, sort_keys=True)),
        })
    return out


def to_json(result: GradingResult | Dict[str, Any]) -> Dict[str, Any]:
    """Return a JSON-safe payload for breakdown export."""

    return {"rows": _rows(result)}


def to_csv(result: GradingResult | Dict[str, Any]) -> str:
    """Render the breakdown as CSV with a fixed header."""

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_FIELDS)
    writer.writeheader()
    for row in _rows(result):
        writer.writerow(row)
    return buf.getvalue()


__all__ = ["to_json", "to_csv"]

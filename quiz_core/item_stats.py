"""Online per-question statistics.

Every update is an increment on the previous aggregate, so nothing here
re-reads historical attempts.  Deltas commute: storage may apply them in any
order, as long as it applies each (attempt, question) pair at most once.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from . import config
from .types import QuestionOutcome, QuestionStats, StatsDelta


def record_outcome(stats: QuestionStats, was_correct: bool, time_spent: Optional[float]) -> QuestionStats:
    """Fold one answer into ``stats`` in place and return it.

    ``average_time_spent`` uses the incremental mean
    ``avg + (t - avg) / n``; ``time_spent=None`` leaves it unchanged.
    """
    stats.times_asked += 1
    if was_correct:
        stats.times_correct += 1
    if time_spent is not None:
        stats.average_time_spent += (float(time_spent) - stats.average_time_spent) / stats.times_asked
    stats.success_rate = stats.times_correct / stats.times_asked
    return stats


def apply_delta(stats: QuestionStats, delta: StatsDelta) -> QuestionStats:
    return record_outcome(stats, delta.was_correct, delta.time_spent)


def apply_deltas(stats_by_question: Dict[str, QuestionStats], deltas: Iterable[StatsDelta]) -> Dict[str, QuestionStats]:
    for delta in deltas:
        stats = stats_by_question.setdefault(delta.question_id, QuestionStats())
        apply_delta(stats, delta)
    return stats_by_question


def time_shares(outcomes: Mapping[str, QuestionOutcome], time_spent: float,
                policy: Optional[str] = None) -> Dict[str, Optional[float]]:
    policy = policy or config.TIME_ATTRIBUTION
    if policy not in config.TIME_ATTRIBUTIONS:
        raise ValueError(f"unknown time attribution {policy!r}; expected one of {config.TIME_ATTRIBUTIONS}")
    counted = [qid for qid, o in outcomes.items() if o.status != "pending_manual"]
    if policy == "omit" or not counted:
        return {qid: None for qid in counted}
    share = float(time_spent) / len(counted)
    return {qid: share for qid in counted}


def outcome_deltas(outcomes: Mapping[str, QuestionOutcome], time_spent: float,
                   policy: Optional[str] = None) -> List[StatsDelta]:
    """One delta per auto-graded question of a finished attempt.

    Unanswered questions count as asked and incorrect.  Questions waiting for
    manual grading produce no delta.
    """
    shares = time_shares(outcomes, time_spent, policy)
    return [
        StatsDelta(question_id=qid, was_correct=outcomes[qid].correct, time_spent=shares[qid])
        for qid in sorted(shares)
    ]


def stats_to_dict(stats: QuestionStats) -> Dict[str, object]:
    return {
        "times_asked": stats.times_asked,
        "times_correct": stats.times_correct,
        "average_time_spent": stats.average_time_spent,
        "success_rate": stats.success_rate,
    }


def stats_from_dict(raw: Mapping[str, object]) -> QuestionStats:
    rate = raw.get("success_rate")
    return QuestionStats(
        times_asked=int(raw.get("times_asked", 0) or 0),  # type: ignore[arg-type]
        times_correct=int(raw.get("times_correct", 0) or 0),  # type: ignore[arg-type]
        average_time_spent=float(raw.get("average_time_spent", 0.0) or 0.0),  # type: ignore[arg-type]
        success_rate=None if rate is None else float(rate),  # type: ignore[arg-type]
    )

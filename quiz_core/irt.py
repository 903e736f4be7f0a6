"""3PL item response helpers for adaptive quizzes.

Question calibration (``irt_difficulty``, ``irt_discrimination``,
``irt_guessing``) is authored metadata; nothing here writes it back.  The
helpers estimate a learner ability from a response history, pick the most
informative next question and decide when an adaptive run can stop.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from . import config
from .types import QuizQuestion

__all__ = [
    "ItemParams",
    "Response",
    "AbilityEstimate",
    "sigma",
    "params_for",
    "probability",
    "item_info",
    "se_from_info",
    "estimate_ability",
    "select_next_question",
    "should_continue",
    "final_results",
]

log = logging.getLogger(__name__)

_EPS = 1e-6


@dataclass(frozen=True)
class ItemParams:
    difficulty: float = 0.0
    discrimination: float = 1.0
    guessing: float = 0.25


@dataclass(frozen=True)
class Response:
    question_id: str
    correct: bool
    params: ItemParams


@dataclass
class AbilityEstimate:
    theta: float
    se: float
    info_total: float
    history: List[int] = field(default_factory=list)


def sigma(x: float) -> float:
    """Logistic function, split at zero so large inputs never overflow."""

    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


def params_for(q: QuizQuestion) -> ItemParams:
    """Question calibration with the configured defaults filled in."""

    return ItemParams(
        difficulty=config.IRT_DEFAULT_DIFFICULTY if q.irt_difficulty is None else float(q.irt_difficulty),
        discrimination=config.IRT_DEFAULT_DISCRIMINATION if q.irt_discrimination is None else float(q.irt_discrimination),
        guessing=config.IRT_DEFAULT_GUESSING if q.irt_guessing is None else float(q.irt_guessing),
    )


def probability(theta: float, p: ItemParams) -> float:
    """``P(θ) = c + (1 − c) · σ(a(θ − b))``, clamped to [0, 1]."""

    prob = p.guessing + (1.0 - p.guessing) * sigma(p.discrimination * (theta - p.difficulty))
    return max(0.0, min(1.0, prob))


def item_info(theta: float, p: ItemParams) -> float:
    prob = probability(theta, p)
    return max((p.discrimination ** 2) * prob * (1.0 - prob), 0.0)


def se_from_info(info_total: float) -> float:
    """Standard error of θ from accumulated Fisher information."""

    return 1.0 / math.sqrt(max(info_total, _EPS))


def _clamp_theta(theta: float) -> float:
    return max(config.IRT_THETA_MIN, min(config.IRT_THETA_MAX, theta))


def estimate_ability(responses: Sequence[Response], initial_theta: float = 0.0) -> AbilityEstimate:
    """Newton maximum-likelihood estimate of θ.

    Parameters
    ----------
    responses: Sequence[Response]
        Answered questions with their calibration.
    initial_theta: float
        Starting point; returned as-is for an empty history.

    Returns
    -------
    AbilityEstimate
        θ (clamped to the configured range), its standard error and the
        total information at θ.  With all-correct or all-wrong histories the
        likelihood has no interior maximum; the clamp bounds the walk.
    """

    if not responses:
        return AbilityEstimate(theta=initial_theta, se=se_from_info(0.0), info_total=0.0)

    theta = initial_theta
    for _ in range(config.IRT_MAX_ITERATIONS):
        grad = 0.0
        hess = 0.0
        for r in responses:
            prob = probability(theta, r.params)
            a = r.params.discrimination
            grad += a * ((1.0 if r.correct else 0.0) - prob)
            hess -= (a * a) * prob * (1.0 - prob)
        if abs(hess) < _EPS:
            break
        delta = grad / hess
        new_theta = _clamp_theta(theta - delta)
        step = new_theta - theta
        theta = new_theta
        if abs(step) < config.IRT_CONVERGENCE:
            break

    info_total = sum(item_info(theta, r.params) for r in responses)
    return AbilityEstimate(
        theta=theta,
        se=se_from_info(info_total),
        info_total=info_total,
        history=[1 if r.correct else 0 for r in responses],
    )


def select_next_question(
    questions: Iterable[QuizQuestion],
    ability: AbilityEstimate,
    answered: Iterable[str],
) -> Optional[QuizQuestion]:
    """Most informative unanswered question at the current θ.

    Information values within ``IRT_INFO_TIE`` of each other count as a tie,
    broken by how close the difficulty sits to θ.
    """

    seen = set(answered)
    pool = [q for q in questions if q.id not in seen]
    if not pool:
        return None
    scored = [(item_info(ability.theta, params_for(q)), abs(params_for(q).difficulty - ability.theta), q) for q in pool]
    best_info = max(info for info, _, _ in scored)
    contenders = [row for row in scored if best_info - row[0] <= config.IRT_INFO_TIE]
    contenders.sort(key=lambda row: (row[1], -row[0]))
    choice = contenders[0][2]
    log.debug("adaptive pick %s theta=%.3f info=%.4f", choice.id, ability.theta, contenders[0][0])
    return choice


def should_continue(ability: AbilityEstimate, answered_count: int, target_se: Optional[float] = None) -> bool:
    """Stop at the question cap, at the target precision, or once the
    minimum length is reached with a usable estimate."""

    target = config.ADAPTIVE_TARGET_SE if target_se is None else target_se
    if answered_count >= config.ADAPTIVE_MAX_QUESTIONS:
        return False
    if ability.se <= target:
        return False
    if answered_count >= config.ADAPTIVE_MIN_QUESTIONS and ability.se <= config.ADAPTIVE_MIN_SE:
        return False
    return True


_BANDS: tuple[tuple[float, str, tuple[str, ...]], ...] = (
    (90.0, "EXPERT", ("Consider advanced courses", "Mentor other students")),
    (80.0, "ADVANCED", ("Practice advanced concepts", "Take challenging exercises")),
    (70.0, "INTERMEDIATE", ("Review foundational concepts", "Practice regularly")),
    (60.0, "BEGINNER", ("Focus on basics", "Seek additional help")),
)


def final_results(ability: AbilityEstimate, answered_count: int) -> Dict[str, object]:
    """Map θ onto a 0–100 score and a proficiency band."""

    raw = config.ADAPTIVE_SCORE_CENTER + ability.theta * config.ADAPTIVE_SCORE_SCALE
    score = max(0.0, min(100.0, raw))
    proficiency, recs = "NEEDS_IMPROVEMENT", ("Review prerequisite materials", "Consider remedial courses")
    for floor, label, band_recs in _BANDS:
        if score >= floor:
            proficiency, recs = label, band_recs
            break
    return {
        "score": int(math.floor(score + 0.5)),
        "proficiency": proficiency,
        "theta": ability.theta,
        "se": ability.se,
        "questions_answered": answered_count,
        "recommendations": list(recs),
    }

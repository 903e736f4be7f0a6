from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    return raw if raw in choices else default


# Grading policy.
# SHORT_ANSWER / FILL_IN_BLANK: trimmed, inner whitespace collapsed, case folded
# unless this flag is set.
TEXT_ANSWER_CASE_SENSITIVE: bool = False

# ESSAY / MATCHING / DRAG_DROP / HOTSPOT:
#   "manual"   -> pending manual grading, excluded from the automatic percentage
#   "presence" -> full points for any non-empty answer
MANUAL_GRADING_POLICIES: tuple[str, ...] = ("manual", "presence")
MANUAL_GRADING_POLICY: str = "manual"

# Per-question time attribution for item statistics:
#   "even" -> attempt time split evenly across auto-graded questions
#   "omit" -> average_time_spent is not updated
TIME_ATTRIBUTIONS: tuple[str, ...] = ("even", "omit")
TIME_ATTRIBUTION: str = "even"

# Answers for question ids outside the attempt are dropped unless strict.
STRICT_SUBMISSIONS: bool = False

# Seed mixed into per-attempt shuffles; None keeps shuffles keyed on attempt id only.
SHUFFLE_SEED: str | None = None

# IRT defaults for questions authored without calibration metadata.
IRT_DEFAULT_DIFFICULTY: float = 0.0
IRT_DEFAULT_DISCRIMINATION: float = 1.0
IRT_DEFAULT_GUESSING: float = 0.25
IRT_THETA_MIN: float = -4.0
IRT_THETA_MAX: float = 4.0
IRT_MAX_ITERATIONS: int = 10
IRT_CONVERGENCE: float = 0.1
IRT_INFO_TIE: float = 0.1

ADAPTIVE_INITIAL_ABILITY: float = 0.0
ADAPTIVE_MAX_QUESTIONS: int = 20
ADAPTIVE_MIN_QUESTIONS: int = 5
ADAPTIVE_TARGET_SE: float = 0.3
ADAPTIVE_MIN_SE: float = 0.5
ADAPTIVE_SCORE_CENTER: float = 50.0
ADAPTIVE_SCORE_SCALE: float = 15.0
# Adaptive attempts are scored on the 0-100 ability scale.
ADAPTIVE_MAX_SCORE: int = 100

# Quiz audit thresholds.
AUDIT_MIN_EXPOSURES: int = 20
AUDIT_SUCCESS_LOW: float = 0.15
AUDIT_SUCCESS_HIGH: float = 0.95
AUDIT_MANUAL_SHARE_MAX: float = 0.5

BREAKDOWN_EXPORT_ENABLED: bool = True

# // env overrides for staging/ops; defaults remain conservative.
TEXT_ANSWER_CASE_SENSITIVE = _env_bool("TEXT_ANSWER_CASE_SENSITIVE", TEXT_ANSWER_CASE_SENSITIVE)
MANUAL_GRADING_POLICY = _env_choice("MANUAL_GRADING_POLICY", MANUAL_GRADING_POLICY, MANUAL_GRADING_POLICIES)
TIME_ATTRIBUTION = _env_choice("TIME_ATTRIBUTION", TIME_ATTRIBUTION, TIME_ATTRIBUTIONS)
STRICT_SUBMISSIONS = _env_bool("STRICT_SUBMISSIONS", STRICT_SUBMISSIONS)
SHUFFLE_SEED = os.getenv("SHUFFLE_SEED", None)
ADAPTIVE_MAX_QUESTIONS = _env_int("ADAPTIVE_MAX_QUESTIONS", ADAPTIVE_MAX_QUESTIONS)
ADAPTIVE_MIN_QUESTIONS = _env_int("ADAPTIVE_MIN_QUESTIONS", ADAPTIVE_MIN_QUESTIONS)
ADAPTIVE_TARGET_SE = _env_float("ADAPTIVE_TARGET_SE", ADAPTIVE_TARGET_SE)
AUDIT_MIN_EXPOSURES = _env_int("AUDIT_MIN_EXPOSURES", AUDIT_MIN_EXPOSURES)
BREAKDOWN_EXPORT_ENABLED = _env_bool("BREAKDOWN_EXPORT_ENABLED", BREAKDOWN_EXPORT_ENABLED)

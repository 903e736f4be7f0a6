from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Literal

QuestionType = Literal[
    "MULTIPLE_CHOICE", "TRUE_FALSE", "SHORT_ANSWER", "FILL_IN_BLANK",
    "ESSAY", "MATCHING", "DRAG_DROP", "HOTSPOT",
]
AttemptStatus = Literal["IN_PROGRESS", "COMPLETED", "ABANDONED"]
AttemptMode = Literal["standard", "adaptive"]
OutcomeStatus = Literal["graded", "unanswered", "pending_manual"]

QUESTION_TYPES: tuple[str, ...] = (
    "MULTIPLE_CHOICE", "TRUE_FALSE", "SHORT_ANSWER", "FILL_IN_BLANK",
    "ESSAY", "MATCHING", "DRAG_DROP", "HOTSPOT",
)
OPTION_TYPES: tuple[str, ...] = ("MULTIPLE_CHOICE", "TRUE_FALSE")
TEXT_TYPES: tuple[str, ...] = ("SHORT_ANSWER", "FILL_IN_BLANK")
MANUAL_TYPES: tuple[str, ...] = ("ESSAY", "MATCHING", "DRAG_DROP", "HOTSPOT")

IN_PROGRESS: AttemptStatus = "IN_PROGRESS"
COMPLETED: AttemptStatus = "COMPLETED"
ABANDONED: AttemptStatus = "ABANDONED"
STANDARD: AttemptMode = "standard"
ADAPTIVE: AttemptMode = "adaptive"


@dataclass
class QuestionStats:
    times_asked: int = 0
    times_correct: int = 0
    average_time_spent: float = 0.0
    success_rate: Optional[float] = None


@dataclass
class QuizQuestion:
    id: str; type: QuestionType; question: str
    options: List[str] = field(default_factory=list)
    correct_answer: Optional[str] = None
    points: int = 1
    explanation: Optional[str] = None
    hints: List[str] = field(default_factory=list)
    order_index: int = 0
    stats: QuestionStats = field(default_factory=QuestionStats)
    irt_difficulty: Optional[float] = None
    irt_discrimination: Optional[float] = None
    irt_guessing: Optional[float] = None


@dataclass
class QuizDefinition:
    id: str; title: str
    passing_score: int = 70
    time_limit: Optional[int] = None
    allow_retry: bool = True
    max_attempts: int = 0
    shuffle_questions: bool = False
    show_results: bool = True
    show_explanations: bool = False
    target_precision: Optional[float] = None
    questions: List[QuizQuestion] = field(default_factory=list)

    def ordered_questions(self) -> List[QuizQuestion]:
        return sorted(self.questions, key=lambda q: q.order_index)

    def question_map(self) -> Dict[str, QuizQuestion]:
        return {q.id: q for q in self.questions}


@dataclass
class QuizAttempt:
    id: str; quiz_id: str; student_id: str
    attempt_number: int
    started_at: datetime
    status: AttemptStatus = IN_PROGRESS
    completed_at: Optional[datetime] = None
    time_spent: int = 0
    score: Optional[int] = None
    max_score: int = 0
    percentage: Optional[int] = None
    passed: Optional[bool] = None
    question_points: Dict[str, int] = field(default_factory=dict)
    question_order: List[str] = field(default_factory=list)
    abandon_reason: Optional[str] = None
    mode: AttemptMode = STANDARD
    adaptive_history: List[Dict[str, Any]] = field(default_factory=list)
    termination_reason: Optional[str] = None
    ability_estimate: Optional[float] = None


@dataclass
class QuestionOutcome:
    question_id: str
    correct: bool
    awarded_points: int
    submitted_value: Any = None
    status: OutcomeStatus = "graded"


@dataclass
class StatsDelta:
    """Increment for one question's running statistics."""
    question_id: str
    was_correct: bool
    time_spent: Optional[float] = None


@dataclass
class GradingResult:
    attempt_id: str
    score: int
    max_score: int
    gradable_max_score: int
    percentage: int
    passed: bool
    time_spent: int
    per_question_breakdown: Dict[str, QuestionOutcome] = field(default_factory=dict)
    pending_manual_points: int = 0
    ignored_question_ids: List[str] = field(default_factory=list)
    stats_deltas: List[StatsDelta] = field(default_factory=list)

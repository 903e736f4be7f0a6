"""Business-rule failures raised by the quiz engine.

All of these are expected outcomes that the caller translates into a
rejected request; none of them indicate a defect.  ``code`` is the stable,
machine-readable tag the API layer puts in its error payload.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class QuizEngineError(Exception):
    code = "QuizEngineError"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": dict(self.context)}


class AttemptLimitExceeded(QuizEngineError):
    code = "AttemptLimitExceeded"


class RetryNotAllowed(QuizEngineError):
    code = "RetryNotAllowed"


class AttemptAlreadyInProgress(QuizEngineError):
    code = "AttemptAlreadyInProgress"


class InvalidAttemptState(QuizEngineError):
    code = "InvalidAttemptState"

    def __init__(self, attempt_id: str, status: str, expected: str = "IN_PROGRESS",
                 message: Optional[str] = None) -> None:
        super().__init__(
            message or f"attempt {attempt_id} is {status}, expected {expected}",
            attempt_id=attempt_id, status=status, expected=expected,
        )


class QuizMismatch(QuizEngineError):
    code = "QuizMismatch"


class InvalidSubmission(QuizEngineError):
    code = "InvalidSubmission"


class InvalidQuizDefinition(QuizEngineError):
    code = "InvalidQuizDefinition"


__all__ = [
    "QuizEngineError",
    "AttemptLimitExceeded",
    "RetryNotAllowed",
    "AttemptAlreadyInProgress",
    "InvalidAttemptState",
    "QuizMismatch",
    "InvalidSubmission",
    "InvalidQuizDefinition",
]

"""Error taxonomy for the flow engine.

Every failure that reaches the user is converted at the component that
issued the call into one of these kinds. Each kind carries a fixed
user-facing message; the technical cause is only logged.
"""

from enum import Enum

from ..utils.eval_safe import ConditionError


class ErrorKind(str, Enum):
    RECOVERABLE_LOCAL = "recoverable_local"
    RECOVERABLE_BACKGROUND = "recoverable_background"
    RECOVERABLE_DEPENDENCY = "recoverable_dependency"
    FATAL_SUBMISSION = "fatal_submission"
    FATAL_AUTHORIZATION = "fatal_authorization"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RECOVERABLE_LOCAL: "Please correct the highlighted fields.",
    ErrorKind.RECOVERABLE_BACKGROUND: (
        "We couldn't prepare suggestions for the next steps. You can keep going."
    ),
    ErrorKind.RECOVERABLE_DEPENDENCY: (
        "We couldn't load the questions for this step. Try again or skip this step."
    ),
    ErrorKind.FATAL_SUBMISSION: (
        "We couldn't generate your document. Your answers are saved, please try again."
    ),
    ErrorKind.FATAL_AUTHORIZATION: (
        "Your verification has expired. Please verify again to submit."
    ),
}

STUCK_STEP_MESSAGE = (
    "This step couldn't be prepared from your earlier answers, so we skipped it."
)


class SmartFlowError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind = ErrorKind.RECOVERABLE_LOCAL

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class TemplateError(SmartFlowError, ValueError):
    """Template definition is structurally invalid."""


class FieldValidationError(SmartFlowError):
    """A single field failed step-local validation."""

    kind = ErrorKind.RECOVERABLE_LOCAL

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name
        self.message = message


class EnrichmentError(SmartFlowError):
    """Background enrichment call failed."""

    kind = ErrorKind.RECOVERABLE_BACKGROUND


class DynamicFieldsError(SmartFlowError):
    """Dynamic-field generation failed or timed out."""

    kind = ErrorKind.RECOVERABLE_DEPENDENCY


class SubmissionError(SmartFlowError):
    """Terminal document generation failed."""

    kind = ErrorKind.FATAL_SUBMISSION


class TokenExpiredError(SubmissionError):
    """Verification token expired between verification and submission."""

    kind = ErrorKind.FATAL_AUTHORIZATION


__all__ = [
    "ErrorKind",
    "USER_MESSAGES",
    "STUCK_STEP_MESSAGE",
    "SmartFlowError",
    "TemplateError",
    "FieldValidationError",
    "EnrichmentError",
    "DynamicFieldsError",
    "SubmissionError",
    "TokenExpiredError",
    "ConditionError",
]

"""Typed failures raised by the assessment services.

Every error carries the HTTP status the API layer answers with, so services
stay free of FastAPI imports while the handler in ``api.main`` stays generic.
"""
from typing import Optional


class AssessmentError(Exception):
    """Base class for all assessment engine failures."""
    status_code = 400
    code = "assessment_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


# --- Authoring --------------------------------------------------------------

class ValidationError(AssessmentError):
    """Malformed authoring input."""
    code = "validation_error"


class QuizLockedError(AssessmentError):
    """Quiz scoring configuration cannot change once attempts exist."""
    status_code = 409
    code = "quiz_locked"


class ConfigurationError(AssessmentError):
    """Quiz is misconfigured and cannot be scored."""
    status_code = 409
    code = "configuration_error"


class EmptyQuizError(ConfigurationError):
    """Quiz has no questions yet."""
    code = "empty_quiz"


# --- Referential ------------------------------------------------------------

class NotFoundError(AssessmentError):
    status_code = 404
    code = "not_found"


class QuizNotFound(NotFoundError):
    """Quiz not found."""
    code = "quiz_not_found"


class QuestionNotFound(NotFoundError):
    """Question not found."""
    code = "question_not_found"


class OptionNotFound(NotFoundError):
    """Option not found."""
    code = "option_not_found"


class AttemptNotFound(NotFoundError):
    """Attempt not found."""
    code = "attempt_not_found"


class NotEnrolled(AssessmentError):
    """Enrollment does not grant access to this quiz."""
    status_code = 403
    code = "not_enrolled"


# --- Attempt protocol -------------------------------------------------------

class AttemptAlreadyInProgress(AssessmentError):
    """An attempt for this quiz is already in progress."""
    status_code = 409
    code = "attempt_in_progress"

    def __init__(self, attempt_id: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message)
        self.attempt_id = attempt_id


class QuizAlreadyPassed(AssessmentError):
    """Quiz already passed for this enrollment."""
    status_code = 409
    code = "quiz_already_passed"


class RetryLimitReached(AssessmentError):
    """No attempts left for this quiz."""
    status_code = 409
    code = "retry_limit_reached"


class InvalidState(AssessmentError):
    """Attempt is no longer accepting answers."""
    status_code = 409
    code = "invalid_state"


class DeadlineExceeded(AssessmentError):
    """Attempt time limit has passed."""
    status_code = 409
    code = "deadline_exceeded"


class InvalidOption(AssessmentError):
    """Selected option does not belong to the question."""
    status_code = 422
    code = "invalid_option"

"""
Error Handling for the Assessment Engine

This module defines the engine's exception hierarchy:
1. A structured base error carrying a code, severity, details and cause
2. The caller-facing taxonomy (not found, invalid state, validation,
   conflict, configuration)
3. Collaborator failures (store, event delivery) that callers may retry
4. Invariant violations, which indicate a programming error
"""

import json
import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for the engine"""
    UNKNOWN_ERROR = "unknown_error"

    # Lookup errors
    NOT_FOUND_ERROR = "not_found_error"
    ASSESSMENT_NOT_FOUND = "assessment_not_found"
    SESSION_NOT_FOUND = "session_not_found"
    QUESTION_NOT_FOUND = "question_not_found"

    # State errors
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"

    # Input errors
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_SUBJECT = "unknown_subject"
    TEMPLATE_VARIABLE_ERROR = "template_variable_error"

    # Setup errors
    CONFIGURATION_ERROR = "configuration_error"

    # Collaborator errors
    STORE_ERROR = "store_error"
    EVENT_DELIVERY_ERROR = "event_delivery_error"

    # Programming errors
    INVARIANT_VIOLATION = "invariant_violation"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Split a string stack trace into lines"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class EngineError(Exception):
    """Base exception class for all engine errors"""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if severity is not None:
            self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exception(type(self), self, self.__traceback__)

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            stack_trace=stack_trace
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a JSON-compatible dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json", exclude_none=True)

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {self.cause}"
        return base_str


class NotFoundError(EngineError):
    """Error raised when a requested assessment, session or question is absent"""

    code = ErrorCode.NOT_FOUND_ERROR
    severity = ErrorSeverity.WARNING


class AssessmentNotFoundError(NotFoundError):
    """Error raised when an assessment is not found"""

    code = ErrorCode.ASSESSMENT_NOT_FOUND

    def __init__(self, assessment_id: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["assessment_id"] = assessment_id
        super().__init__(f"Assessment with ID {assessment_id} not found", details=details)
        self.assessment_id = assessment_id


class SessionNotFoundError(NotFoundError):
    """Error raised when a session is not found"""

    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["session_id"] = session_id
        super().__init__(f"Session with ID {session_id} not found", details=details)
        self.session_id = session_id


class QuestionNotFoundError(NotFoundError):
    """Error raised when a question is not part of a session's snapshot"""

    code = ErrorCode.QUESTION_NOT_FOUND

    def __init__(
        self,
        question_id: str,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["question_id"] = question_id
        message = f"Question with ID {question_id} not found"
        if session_id:
            details["session_id"] = session_id
            message += f" in session {session_id}"
        super().__init__(message, details=details)
        self.question_id = question_id


class InvalidStateError(EngineError):
    """Error raised when an operation does not fit the entity's current state"""

    code = ErrorCode.INVALID_STATE
    severity = ErrorSeverity.WARNING


class ConflictError(EngineError):
    """Error raised when an operation would create a disallowed duplicate"""

    code = ErrorCode.CONFLICT
    severity = ErrorSeverity.WARNING


class ValidationError(EngineError):
    """Error raised when input validation fails"""

    code = ErrorCode.VALIDATION_ERROR
    severity = ErrorSeverity.WARNING


class UnknownSubjectError(ValidationError):
    """Error raised when no question templates exist for a subject"""

    code = ErrorCode.UNKNOWN_SUBJECT

    def __init__(self, subject: str, available: Optional[List[str]] = None):
        super().__init__(
            f"No templates available for subject: {subject}",
            details={"subject": subject, "available_subjects": available or []}
        )
        self.subject = subject


class TemplateVariableError(ValidationError):
    """Error raised when a template variable is unknown or left unresolved"""

    code = ErrorCode.TEMPLATE_VARIABLE_ERROR


class ConfigurationError(EngineError):
    """Error raised when a lookup table or template entry is missing"""

    code = ErrorCode.CONFIGURATION_ERROR

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if config_key is not None:
            details["config_key"] = config_key
        super().__init__(message, details=details)
        self.config_key = config_key


class StoreError(EngineError):
    """Error raised when the persistence collaborator fails"""

    code = ErrorCode.STORE_ERROR


class EventDeliveryError(EngineError):
    """Error raised when the event sink fails to accept an event"""

    code = ErrorCode.EVENT_DELIVERY_ERROR


class InvariantViolationError(EngineError):
    """
    Error raised when an internal invariant no longer holds.

    This signals a programming error; the engine never catches it.
    """

    code = ErrorCode.INVARIANT_VIOLATION
    severity = ErrorSeverity.CRITICAL


def log_error(error: Exception, log: Optional[logging.Logger] = None) -> None:
    """
    Log an error at a level matching its severity.

    Args:
        error: The error to log
        log: Logger to use; defaults to this module's logger
    """
    log = log or logger
    if isinstance(error, EngineError):
        level = {
            ErrorSeverity.DEBUG: logging.DEBUG,
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
        }[error.severity]
        log.log(level, str(error), exc_info=error if level >= logging.ERROR else None)
    else:
        log.error(f"Unexpected error: {error}", exc_info=error)

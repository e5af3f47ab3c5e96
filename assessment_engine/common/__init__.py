"""
Common Components for the Assessment Engine

This package contains infrastructure shared by every engine component.

Key components:
1. Logging - Centralized logging configuration
2. Error Handling - The engine's exception hierarchy
3. Configuration - Settings loaded from files and the environment
4. Events - Domain events and the in-process dispatcher
5. Locking - Per-key asyncio locks
6. Store - Persistence interface with memory and SQL implementations
"""

# Initialize logging
from assessment_engine.common.logger import app_logger

from assessment_engine.common.error_handling import (
    EngineError, ErrorCode, ErrorSeverity, NotFoundError, AssessmentNotFoundError,
    SessionNotFoundError, QuestionNotFoundError, InvalidStateError, ConflictError,
    ValidationError, UnknownSubjectError, TemplateVariableError, ConfigurationError,
    StoreError, EventDeliveryError, InvariantViolationError
)

from assessment_engine.common.events import (
    DomainEvent, EventType, EventSink, EventDispatcher, RecordingEventSink
)

from assessment_engine.common.locking import KeyedLockRegistry

__all__ = [
    # Logging
    'app_logger',

    # Errors
    'EngineError', 'ErrorCode', 'ErrorSeverity', 'NotFoundError', 'AssessmentNotFoundError',
    'SessionNotFoundError', 'QuestionNotFoundError', 'InvalidStateError', 'ConflictError',
    'ValidationError', 'UnknownSubjectError', 'TemplateVariableError', 'ConfigurationError',
    'StoreError', 'EventDeliveryError', 'InvariantViolationError',

    # Events
    'DomainEvent', 'EventType', 'EventSink', 'EventDispatcher', 'RecordingEventSink',

    # Locking
    'KeyedLockRegistry',
]

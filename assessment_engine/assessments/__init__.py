"""
Assessment components: models, question generation, evaluation, feedback,
adaptive difficulty, sessions, analytics and the engine facade.
"""

from assessment_engine.assessments.models import (
    Assessment, AssessmentSettings, AssessmentStatus, AssessmentType, DifficultyTier,
    Question, QuestionType, Response, Session, SessionAnalytics, SessionStatus
)
from assessment_engine.assessments.session_service import SessionCompletion, SubmissionResult
from assessment_engine.assessments.analytics import AssessmentReport
from assessment_engine.assessments.engine import AssessmentEngine

__all__ = [
    'Assessment', 'AssessmentSettings', 'AssessmentStatus', 'AssessmentType', 'DifficultyTier',
    'Question', 'QuestionType', 'Response', 'Session', 'SessionAnalytics', 'SessionStatus',
    'SessionCompletion', 'SubmissionResult', 'AssessmentReport', 'AssessmentEngine',
]

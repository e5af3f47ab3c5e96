"""
Analytics & Reporting

This module computes:
1. Per-session analytics when a session ends (or is abandoned)
2. Per-assessment reports across every session of an assessment
3. Heuristic recommendations for assessment authors
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from assessment_engine.common.logger import app_logger, log_execution_time
from assessment_engine.common.serialization import serialize
from assessment_engine.assessments.models import (
    Assessment, AssessmentAnalyticsCache, Session, SessionAnalytics, SessionStatus, utcnow
)

# Module logger
logger = app_logger.getChild("analytics")

INSUFFICIENT_DATA = "Insufficient data for recommendations"
LOW_SCORE_THRESHOLD = 50
HIGH_SCORE_THRESHOLD = 90
SLOW_TIME_RATIO = 0.9
FAST_TIME_RATIO = 0.5


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole else 0


def compute_session_analytics(session: Session, now: Optional[datetime.datetime] = None) -> SessionAnalytics:
    """
    Summarize a session's performance.

    Accuracy is the unrounded percentage of answered questions that were
    correct, 0 when nothing was answered.

    Args:
        session: The session to summarize
        now: Reference time for sessions that have not ended

    Returns:
        The session analytics
    """
    responses = session.responses
    answered = len(responses)
    correct = sum(1 for response in responses if response.is_correct)

    distribution: Dict[str, int] = {}
    trend: List[float] = []
    running_correct = 0
    for index, response in enumerate(responses, start=1):
        tier = response.difficulty.value
        distribution[tier] = distribution.get(tier, 0) + 1
        running_correct += 1 if response.is_correct else 0
        trend.append(_percent(running_correct, index))

    return SessionAnalytics(
        total_questions=len(session.questions),
        answered_questions=answered,
        correct_answers=correct,
        accuracy=_percent(correct, answered),
        score=session.score,
        max_score=session.max_score,
        time_spent_ms=session.elapsed_ms(now),
        average_time_per_question_ms=(
            sum(response.time_spent_ms for response in responses) / answered if answered else 0
        ),
        difficulty_distribution=distribution,
        performance_trend=trend,
        adjustments=len(session.adjustments),
        integrity_flags=len(session.integrity_flags),
    )


@dataclass
class AssessmentReport:
    """Aggregate report over all sessions of an assessment."""

    assessment_id: str
    title: str
    total_sessions: int = 0
    completed_sessions: int = 0
    abandoned_sessions: int = 0
    active_sessions: int = 0
    average_score: float = 0
    average_time_ms: float = 0
    completion_rate: float = 0
    difficulty_analysis: Dict[str, Dict[str, float]] = field(default_factory=dict)
    question_analysis: Dict[str, Dict[str, float]] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    insufficient_data: bool = False
    generated_at: datetime.datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "title": self.title,
            "total_sessions": self.total_sessions,
            "completed_sessions": self.completed_sessions,
            "abandoned_sessions": self.abandoned_sessions,
            "active_sessions": self.active_sessions,
            "average_score": self.average_score,
            "average_time_ms": self.average_time_ms,
            "completion_rate": self.completion_rate,
            "difficulty_analysis": self.difficulty_analysis,
            "question_analysis": self.question_analysis,
            "recommendations": self.recommendations,
            "insufficient_data": self.insufficient_data,
            "generated_at": serialize(self.generated_at),
        }


class AnalyticsService:
    """Builds assessment reports from sessions."""

    @log_execution_time(logger)
    def generate_report(self, assessment: Assessment, sessions: List[Session]) -> AssessmentReport:
        """
        Build a report for an assessment and refresh its analytics cache.

        Args:
            assessment: The assessment; its ``analytics`` cache is updated in place
            sessions: Every session that references the assessment

        Returns:
            The assessment report
        """
        completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]
        abandoned = [s for s in sessions if s.status == SessionStatus.ABANDONED]

        report = AssessmentReport(
            assessment_id=assessment.id,
            title=assessment.title,
            total_sessions=len(sessions),
            completed_sessions=len(completed),
            abandoned_sessions=len(abandoned),
            active_sessions=len(sessions) - len(completed) - len(abandoned),
            average_score=self.average_score(completed),
            average_time_ms=self.average_time(completed),
            completion_rate=_percent(len(completed), len(sessions)),
            difficulty_analysis=self.analyze_difficulty(sessions),
            question_analysis=self.analyze_questions(sessions),
            insufficient_data=not completed,
        )
        report.recommendations = self.recommendations(
            completed, report.average_score, report.average_time_ms, assessment.settings.time_limit_ms
        )

        assessment.analytics = AssessmentAnalyticsCache(
            total_attempts=report.total_sessions,
            completed_attempts=report.completed_sessions,
            average_score=report.average_score,
            completion_rate=report.completion_rate,
            average_time_ms=report.average_time_ms,
            updated_at=report.generated_at,
        )
        logger.info(
            f"Report for assessment {assessment.id}: {report.completed_sessions}/{report.total_sessions} "
            f"completed, average score {report.average_score:.1f}%"
        )
        return report

    @staticmethod
    def average_score(completed: List[Session]) -> float:
        """Mean score percentage over completed sessions, 0 when there are none."""
        if not completed:
            return 0
        return sum(_percent(s.score, s.max_score) for s in completed) / len(completed)

    @staticmethod
    def average_time(completed: List[Session]) -> float:
        if not completed:
            return 0
        return sum(s.elapsed_ms() for s in completed) / len(completed)

    @staticmethod
    def analyze_difficulty(sessions: List[Session]) -> Dict[str, Dict[str, float]]:
        """Per-tier totals and accuracy over every recorded response."""
        analysis: Dict[str, Dict[str, float]] = {}
        for session in sessions:
            for response in session.responses:
                stats = analysis.setdefault(response.difficulty.value, {"total": 0, "correct": 0})
                stats["total"] += 1
                stats["correct"] += 1 if response.is_correct else 0
        for stats in analysis.values():
            stats["accuracy"] = _percent(stats["correct"], stats["total"])
        return analysis

    @staticmethod
    def analyze_questions(sessions: List[Session]) -> Dict[str, Dict[str, float]]:
        """Per-question attempts, accuracy and average answering time."""
        analysis: Dict[str, Dict[str, float]] = {}
        for session in sessions:
            for response in session.responses:
                stats = analysis.setdefault(
                    response.question_id, {"attempts": 0, "correct": 0, "total_time_ms": 0}
                )
                stats["attempts"] += 1
                stats["correct"] += 1 if response.is_correct else 0
                stats["total_time_ms"] += response.time_spent_ms
        for stats in analysis.values():
            stats["accuracy"] = _percent(stats["correct"], stats["attempts"])
            stats["average_time_ms"] = stats.pop("total_time_ms") / stats["attempts"]
        return analysis

    @staticmethod
    def recommendations(
        completed: List[Session],
        average_score: float,
        average_time_ms: float,
        time_limit_ms: int
    ) -> List[str]:
        """Heuristic suggestions for the assessment's author."""
        if not completed:
            return [INSUFFICIENT_DATA]

        recommendations = []
        if average_score < LOW_SCORE_THRESHOLD:
            recommendations.append("Consider reviewing fundamental concepts before attempting this assessment")
            recommendations.append("Provide additional practice materials for struggling students")
        elif average_score > HIGH_SCORE_THRESHOLD:
            recommendations.append("Consider increasing difficulty level for better challenge")
            recommendations.append("Add more advanced questions to stretch high-performing students")

        if average_time_ms > time_limit_ms * SLOW_TIME_RATIO:
            recommendations.append("Consider extending time limit or reducing question count")
        elif average_time_ms < time_limit_ms * FAST_TIME_RATIO:
            recommendations.append("Consider adding more challenging questions or reducing time limit")

        return recommendations

"""
Adaptive Difficulty Management

This module adjusts the difficulty of a session's remaining questions based
on the student's recent performance:
1. A DifficultyStrategy decides whether to raise, lower or maintain
2. The AdaptiveDifficultyController applies that decision to unanswered
   questions, recomputing their points, expected time and essay length
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from assessment_engine.common.logger import app_logger
from assessment_engine.assessments.models import (
    AdjustmentDirection, DifficultyAdjustment, QuestionType, Response, Session
)
from assessment_engine.assessments.templates import essay_min_words_for, estimated_time_for, points_for

# Module logger
logger = app_logger.getChild("adaptive_difficulty")


@dataclass
class DifficultyDecision:
    """Outcome of a strategy evaluation."""
    direction: AdjustmentDirection
    accuracy: Optional[float] = None
    window: int = 0


class DifficultyStrategy(ABC):
    """Decides how difficulty should move given a session's responses."""

    @abstractmethod
    def decide(self, responses: List[Response]) -> DifficultyDecision:
        """
        Decide on a difficulty change.

        Args:
            responses: The session's responses in submission order

        Returns:
            The decision
        """
        pass


class RollingWindowStrategy(DifficultyStrategy):
    """
    Accuracy over the most recent responses against two thresholds.

    Accuracy at or above ``raise_threshold`` raises difficulty, at or below
    ``lower_threshold`` lowers it. Nothing changes until ``window`` responses
    exist.
    """

    def __init__(self, window: int = 3, raise_threshold: float = 0.8, lower_threshold: float = 0.3):
        if window < 1:
            raise ValueError("window must be at least 1")
        if lower_threshold >= raise_threshold:
            raise ValueError("lower_threshold must be below raise_threshold")
        self.window = window
        self.raise_threshold = raise_threshold
        self.lower_threshold = lower_threshold

    def decide(self, responses: List[Response]) -> DifficultyDecision:
        if len(responses) < self.window:
            return DifficultyDecision(AdjustmentDirection.MAINTAIN)

        recent = responses[-self.window:]
        accuracy = sum(1 for response in recent if response.is_correct) / len(recent)

        if accuracy >= self.raise_threshold:
            direction = AdjustmentDirection.RAISE
        elif accuracy <= self.lower_threshold:
            direction = AdjustmentDirection.LOWER
        else:
            direction = AdjustmentDirection.MAINTAIN
        return DifficultyDecision(direction, accuracy, self.window)


class AdaptiveDifficultyController:
    """Applies strategy decisions to sessions."""

    def __init__(self, strategy: Optional[DifficultyStrategy] = None):
        self.strategy = strategy or RollingWindowStrategy()

    def adapt(self, session: Session) -> Optional[DifficultyAdjustment]:
        """
        Adjust the unanswered questions of a session.

        Answered questions never change. The adjustment is recorded on the
        session even when every remaining question is already at the cap or
        floor.

        Args:
            session: Session to adjust in place

        Returns:
            The recorded adjustment, or None when difficulty is maintained
        """
        if not session.settings.adaptive_enabled:
            return None

        decision = self.strategy.decide(session.responses)
        if decision.direction == AdjustmentDirection.MAINTAIN:
            return None

        changed = []
        for question in session.unanswered_questions():
            if decision.direction == AdjustmentDirection.RAISE:
                tier = question.difficulty.raised()
            else:
                tier = question.difficulty.lowered()
            if tier == question.difficulty:
                continue
            question.difficulty = tier
            question.points = points_for(tier)
            question.estimated_time_ms = estimated_time_for(tier, question.type)
            if question.type == QuestionType.ESSAY:
                question.min_words = essay_min_words_for(tier)
            changed.append(question.id)

        adjustment = DifficultyAdjustment(
            direction=decision.direction,
            accuracy=decision.accuracy,
            window=decision.window,
            after_responses=len(session.responses),
            question_ids=changed,
        )
        session.adjustments.append(adjustment)
        logger.debug(
            f"Session {session.id}: {decision.direction.value} difficulty at accuracy "
            f"{decision.accuracy:.2f}, {len(changed)} question(s) changed"
        )
        return adjustment

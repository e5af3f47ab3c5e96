"""
Real-time feedback for submitted answers.
"""

import random
from typing import Any, Dict, List, Optional

from assessment_engine.common.error_handling import ConfigurationError
from assessment_engine.assessments.models import Feedback, FeedbackType, Question

ENCOURAGEMENTS: Dict[FeedbackType, List[str]] = {
    FeedbackType.CORRECT: [
        "Great job! Keep up the excellent work!",
        "Perfect! You're really understanding this concept.",
        "Excellent! Your hard work is paying off.",
        "Outstanding! You've got this!",
    ],
    FeedbackType.INCORRECT: [
        "Don't worry, learning is a process. Keep trying!",
        "You're making progress! Every mistake is a learning opportunity.",
        "Stay positive! You're closer to the answer than you think.",
        "Keep going! You've got the skills to figure this out.",
    ],
}


class FeedbackGenerator:
    """Builds feedback from a question's templates, hints and explanation."""

    def __init__(self, max_hints: int = 2, rng: Optional[random.Random] = None):
        self.max_hints = max_hints
        self.rng = rng or random.Random()

    def generate_feedback(self, question: Question, answer: Any, is_correct: bool) -> Feedback:
        """
        Build the feedback for an evaluated answer.

        Hints are included only for incorrect answers and the explanation
        only for correct ones.

        Raises:
            ConfigurationError: If the question has no message for the outcome
        """
        feedback_type = FeedbackType.CORRECT if is_correct else FeedbackType.INCORRECT
        message = (question.feedback or {}).get(feedback_type.value)
        if not message:
            raise ConfigurationError(
                f"Question {question.id} has no '{feedback_type.value}' feedback template",
                config_key=f"feedback.{feedback_type.value}"
            )

        return Feedback(
            type=feedback_type,
            message=message,
            hints=[] if is_correct else list(question.hints[:self.max_hints]),
            explanation=question.explanation if is_correct else None,
            encouragement=self.rng.choice(ENCOURAGEMENTS[feedback_type]),
        )

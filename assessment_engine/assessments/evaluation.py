"""
Answer Evaluation

Evaluators decide whether a submitted answer is correct. They are pure:
no I/O, no mutation of the question, and the same input always gives the
same verdict.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from assessment_engine.common.error_handling import ValidationError
from assessment_engine.assessments.models import Question, QuestionType


def normalize_answer(answer: str) -> str:
    """Normalize free text for comparison: trimmed and lowercased."""
    return answer.strip().lower()


def count_words(text: str) -> int:
    return len(text.split())


class AnswerEvaluator(ABC):
    """
    Abstract interface for evaluating answers.

    Implementations must reject malformed answers in validate_answer before
    any state is touched by the caller.
    """

    @abstractmethod
    def validate_answer(self, question: Question, answer: Any) -> None:
        """
        Check that an answer has the shape the question type expects.

        Args:
            question: The question being answered
            answer: The submitted answer

        Raises:
            ValidationError: If the answer is malformed
        """
        pass

    @abstractmethod
    def evaluate(self, question: Question, answer: Any) -> bool:
        """
        Decide whether an answer is correct.

        Args:
            question: The question being answered
            answer: The submitted answer

        Returns:
            True if the answer is correct

        Raises:
            ValidationError: If the answer is malformed
        """
        pass


class RuleBasedEvaluator(AnswerEvaluator):
    """
    Default evaluator.

    1. Multiple choice and true/false: exact match on the option ID
    2. Short answer: trimmed, case-insensitive match
    3. Fill in the blank: the same normalization against any accepted form
    4. Essay: accepted when it reaches the minimum word count
    """

    def __init__(self, essay_min_words: int = 50):
        """
        Initialize the evaluator.

        Args:
            essay_min_words: Minimum essay length for questions that set none
        """
        self.essay_min_words = essay_min_words

    def validate_answer(self, question: Question, answer: Any) -> None:
        details = {"question_id": question.id, "question_type": question.type.value}
        if answer is None:
            raise ValidationError("Answer is required", details=details)

        if question.type == QuestionType.TRUE_FALSE:
            if isinstance(answer, bool):
                return
            if not isinstance(answer, str) or normalize_answer(answer) not in ("true", "false"):
                raise ValidationError("True/false answers must be a boolean or 'true'/'false'", details=details)
            return

        if not isinstance(answer, str):
            raise ValidationError(
                f"Answers to {question.type.value} questions must be text, got {type(answer).__name__}",
                details=details
            )

    def evaluate(self, question: Question, answer: Any) -> bool:
        self.validate_answer(question, answer)

        if question.type == QuestionType.MULTIPLE_CHOICE:
            return answer == question.correct_answer

        if question.type == QuestionType.TRUE_FALSE:
            submitted = self._normalize_boolean(answer)
            return submitted == self._normalize_boolean(question.correct_answer)

        if question.type == QuestionType.SHORT_ANSWER:
            if not isinstance(question.correct_answer, str):
                return False
            return normalize_answer(answer) == normalize_answer(question.correct_answer)

        if question.type == QuestionType.FILL_BLANK:
            accepted = question.correct_answer
            if isinstance(accepted, str):
                accepted = [accepted]
            submitted = normalize_answer(answer)
            return any(submitted == normalize_answer(form) for form in accepted or [])

        if question.type == QuestionType.ESSAY:
            return count_words(answer) >= self._min_words(question)

        return False

    def _min_words(self, question: Question) -> int:
        return question.min_words if question.min_words is not None else self.essay_min_words

    @staticmethod
    def _normalize_boolean(value: Any) -> Optional[str]:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return normalize_answer(value)
        return None

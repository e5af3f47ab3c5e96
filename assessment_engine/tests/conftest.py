"""
Shared fixtures for the assessment engine tests.
"""

import datetime
import random

import pytest

from assessment_engine.common.config import EngineConfig
from assessment_engine.common.events import RecordingEventSink
from assessment_engine.common.store import MemoryStore
from assessment_engine.assessments.engine import AssessmentEngine
from assessment_engine.assessments.models import (
    ENTITY_TYPES, AnswerOption, DifficultyTier, Question, QuestionType
)
from assessment_engine.assessments.templates import DEFAULT_FEEDBACK, estimated_time_for, points_for


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime.datetime(2024, 1, 1, 9, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)
        return self.now


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def store():
    return MemoryStore(ENTITY_TYPES)


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, events, rng, clock):
    """Engine over an in-memory store, recording every published event."""
    return AssessmentEngine(store=store, events=events, config=EngineConfig(), rng=rng, clock=clock)


@pytest.fixture
def make_question():
    """Factory for hand-built questions with consistent points and time."""
    def factory(
        question_type=QuestionType.MULTIPLE_CHOICE,
        tier=DifficultyTier.INTERMEDIATE,
        correct_answer=None,
        **kwargs
    ):
        question_type = QuestionType(question_type)
        tier = DifficultyTier(tier)
        options = []
        if question_type == QuestionType.MULTIPLE_CHOICE:
            options = [AnswerOption(id=f"option_{i}", text=str(i)) for i in range(4)]
            correct_answer = correct_answer or "option_1"
        elif question_type == QuestionType.TRUE_FALSE:
            options = [AnswerOption(id="true", text="True", value=True), AnswerOption(id="false", text="False", value=False)]
            correct_answer = correct_answer or "true"
        elif question_type == QuestionType.SHORT_ANSWER:
            correct_answer = correct_answer or "42"
        elif question_type == QuestionType.FILL_BLANK:
            correct_answer = correct_answer or ["2x + 3", "2x+3"]
        values = dict(
            type=question_type,
            content=kwargs.pop("content", f"A {question_type.value} question"),
            difficulty=tier,
            points=points_for(tier),
            estimated_time_ms=estimated_time_for(tier, question_type),
            correct_answer=correct_answer,
            options=options,
            explanation="Because it is.",
            hints=["First hint", "Second hint", "Third hint"],
            feedback=dict(DEFAULT_FEEDBACK),
        )
        values.update(kwargs)
        return Question(**values)
    return factory


@pytest.fixture
def create_assessment(engine, make_question):
    """Create (and by default publish) an assessment of hand-built questions."""
    async def factory(questions=None, settings=None, publish=True, count=5, tier=DifficultyTier.INTERMEDIATE):
        if questions is None:
            questions = [make_question(tier=tier) for _ in range(count)]
        spec = {
            "title": "Fixture assessment",
            "subject": "mathematics",
            "questions": questions,
            "settings": {"randomize_questions": False, **(settings or {})},
        }
        assessment = await engine.create_assessment(spec)
        if publish:
            assessment = await engine.publish_assessment(assessment.id)
        return assessment
    return factory

"""
Tests for adaptive difficulty.
"""

import pytest

from assessment_engine.assessments.adaptive_difficulty import (
    AdaptiveDifficultyController, RollingWindowStrategy
)
from assessment_engine.assessments.models import (
    AdjustmentDirection, AssessmentSettings, DifficultyTier, QuestionType, Response, Session
)
from assessment_engine.assessments.templates import essay_min_words_for, estimated_time_for, points_for


def _session(make_question, tiers, adaptive=True):
    questions = [make_question(QuestionType.SHORT_ANSWER, tier) for tier in tiers]
    return Session(
        assessment_id="assessment-1",
        student_id="student-1",
        questions=questions,
        settings=AssessmentSettings(adaptive_enabled=adaptive),
    )


def _answer(session, index, correct):
    question = session.questions[index]
    response = Response(
        question_id=question.id,
        answer="42" if correct else "0",
        is_correct=correct,
        score=question.points if correct else 0,
        time_spent_ms=1000,
        difficulty=question.difficulty,
        points=question.points,
    )
    session.responses.append(response)
    session.score += response.score


class TestRollingWindowStrategy:
    def _responses(self, make_question, outcomes):
        session = _session(make_question, ["intermediate"] * len(outcomes))
        for index, correct in enumerate(outcomes):
            _answer(session, index, correct)
        return session.responses

    def test_needs_a_full_window(self, make_question):
        decision = RollingWindowStrategy().decide(self._responses(make_question, [True, True]))
        assert decision.direction == AdjustmentDirection.MAINTAIN

    @pytest.mark.parametrize("outcomes, direction", [
        ([True, True, True], AdjustmentDirection.RAISE),
        ([False, False, False], AdjustmentDirection.LOWER),
        ([True, False, True], AdjustmentDirection.MAINTAIN),
        ([False, True, False], AdjustmentDirection.MAINTAIN),
        # Only the most recent responses count
        ([False, False, False, True, True, True], AdjustmentDirection.RAISE),
    ])
    def test_decisions(self, make_question, outcomes, direction):
        decision = RollingWindowStrategy().decide(self._responses(make_question, outcomes))
        assert decision.direction == direction

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RollingWindowStrategy(window=0)
        with pytest.raises(ValueError):
            RollingWindowStrategy(raise_threshold=0.3, lower_threshold=0.5)


class TestAdaptiveDifficultyController:
    def test_raises_unanswered_questions(self, make_question):
        session = _session(make_question, ["intermediate"] * 5)
        for index in range(3):
            _answer(session, index, True)

        adjustment = AdaptiveDifficultyController().adapt(session)

        assert adjustment.direction == AdjustmentDirection.RAISE
        assert adjustment.question_ids == [q.id for q in session.questions[3:]]
        for question in session.questions[3:]:
            assert question.difficulty == DifficultyTier.ADVANCED
            assert question.points == 3
            assert question.estimated_time_ms == estimated_time_for(DifficultyTier.ADVANCED, question.type)
        session.check_invariants()

    def test_answered_questions_never_change(self, make_question):
        session = _session(make_question, ["intermediate"] * 4)
        for index in range(3):
            _answer(session, index, False)

        AdaptiveDifficultyController().adapt(session)

        assert [q.difficulty for q in session.questions[:3]] == [DifficultyTier.INTERMEDIATE] * 3
        assert session.questions[3].difficulty == DifficultyTier.BEGINNER
        assert session.questions[3].points == 1

    def test_cap_and_floor(self, make_question):
        session = _session(make_question, ["expert", "expert", "expert", "expert", "beginner"])
        for index in range(3):
            _answer(session, index, True)

        adjustment = AdaptiveDifficultyController().adapt(session)

        assert session.questions[3].difficulty == DifficultyTier.EXPERT
        assert session.questions[4].difficulty == DifficultyTier.INTERMEDIATE
        assert adjustment.question_ids == [session.questions[4].id]

    def test_adjustment_recorded_even_when_nothing_moves(self, make_question):
        session = _session(make_question, ["beginner"] * 4)
        for index in range(3):
            _answer(session, index, False)

        adjustment = AdaptiveDifficultyController().adapt(session)

        assert adjustment.direction == AdjustmentDirection.LOWER
        assert adjustment.question_ids == []
        assert session.adjustments == [adjustment]

    def test_disabled_by_settings(self, make_question):
        session = _session(make_question, ["intermediate"] * 4, adaptive=False)
        for index in range(3):
            _answer(session, index, True)

        assert AdaptiveDifficultyController().adapt(session) is None
        assert session.questions[3].difficulty == DifficultyTier.INTERMEDIATE
        assert session.adjustments == []

    def test_points_always_follow_tier(self, make_question):
        session = _session(make_question, ["beginner"] * 9)
        controller = AdaptiveDifficultyController()
        for index in range(8):
            _answer(session, index, True)
            controller.adapt(session)
            for question in session.questions:
                assert question.points == points_for(question.difficulty)
        assert session.questions[8].difficulty == DifficultyTier.EXPERT

    def test_essay_length_follows_tier(self, make_question):
        session = _session(make_question, ["intermediate"] * 3)
        session.questions.append(make_question(QuestionType.ESSAY, DifficultyTier.INTERMEDIATE, min_words=100))
        for index in range(3):
            _answer(session, index, False)

        AdaptiveDifficultyController().adapt(session)

        essay = session.questions[3]
        assert essay.difficulty == DifficultyTier.BEGINNER
        assert essay.min_words == essay_min_words_for(DifficultyTier.BEGINNER)

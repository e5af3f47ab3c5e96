"""
Tests for the session lifecycle: start, answer, end and abandon.
"""

import asyncio
import copy

import pytest

from assessment_engine.common.error_handling import (
    AssessmentNotFoundError, ConflictError, EventDeliveryError, InvalidStateError,
    QuestionNotFoundError, SessionNotFoundError, StoreError, ValidationError
)
from assessment_engine.common.events import EventDispatcher, EventType
from assessment_engine.common.store import MemoryStore
from assessment_engine.assessments.adaptive_difficulty import RollingWindowStrategy
from assessment_engine.assessments.engine import AssessmentEngine
from assessment_engine.assessments.integrity import IntegrityMonitor
from assessment_engine.assessments.models import (
    ENTITY_TYPES, AdjustmentDirection, DifficultyTier, Session, SessionStatus
)
from assessment_engine.assessments.templates import points_for

CORRECT = "option_1"
WRONG = "option_0"


def assert_consistent(session: Session):
    assert session.score == sum(response.score for response in session.responses)
    assert session.score <= sum(question.points for question in session.questions)
    for question in session.questions:
        assert question.points == points_for(question.difficulty)
    session.check_invariants()


def state_of(session: Session):
    return (
        len(session.responses),
        session.score,
        [(q.id, q.difficulty, q.points) for q in session.questions],
        session.status,
        session.version,
    )


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_snapshots_questions(self, engine, events, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")

        assert session.status == SessionStatus.ACTIVE
        assert session.end_time is None
        assert session.version == 1
        assert [q.id for q in session.questions] == [q.id for q in assessment.questions]
        assert events.of_type(EventType.SESSION_STARTED)[0].payload["session_id"] == session.id

        stored = await engine.store.get("session", session.id)
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_randomized_snapshot_is_a_permutation(self, engine, create_assessment):
        assessment = await create_assessment(count=8, settings={"randomize_questions": True})
        session = await engine.start_session(assessment.id, "student-1")
        assert sorted(q.id for q in session.questions) == sorted(q.id for q in assessment.questions)

    @pytest.mark.asyncio
    async def test_unknown_assessment(self, engine):
        with pytest.raises(AssessmentNotFoundError):
            await engine.start_session("missing", "student-1")

    @pytest.mark.asyncio
    async def test_archived_assessment(self, engine, create_assessment):
        assessment = await create_assessment()
        await engine.archive_assessment(assessment.id)
        with pytest.raises(InvalidStateError):
            await engine.start_session(assessment.id, "student-1")

    @pytest.mark.asyncio
    async def test_draft_assessment_can_start(self, engine, create_assessment):
        assessment = await create_assessment(publish=False)
        session = await engine.start_session(assessment.id, "student-1")
        assert session.is_active

    @pytest.mark.asyncio
    async def test_second_active_session_conflicts(self, engine, create_assessment):
        assessment = await create_assessment()
        await engine.start_session(assessment.id, "student-1")

        with pytest.raises(ConflictError):
            await engine.start_session(assessment.id, "student-1")
        # Other students are unaffected
        await engine.start_session(assessment.id, "student-2")

    @pytest.mark.asyncio
    async def test_retake_after_completion(self, engine, create_assessment):
        assessment = await create_assessment()
        first = await engine.start_session(assessment.id, "student-1")
        await engine.end_session(first.id)

        second = await engine.start_session(assessment.id, "student-1")
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_retakes_allowed_by_option(self, engine, create_assessment):
        assessment = await create_assessment()
        await engine.start_session(assessment.id, "student-1")
        session = await engine.start_session(assessment.id, "student-1", {"allow_retakes": True})
        assert session.settings.allow_retakes is True

    @pytest.mark.asyncio
    async def test_concurrent_starts_conflict(self, engine, create_assessment):
        assessment = await create_assessment()
        results = await asyncio.gather(
            *[engine.start_session(assessment.id, "student-1") for _ in range(5)],
            return_exceptions=True
        )
        started = [r for r in results if isinstance(r, Session)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(started) == 1
        assert len(conflicts) == 4

    @pytest.mark.asyncio
    async def test_options_override_settings_for_one_session(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1", {"time_limit_ms": 60_000})

        assert session.settings.time_limit_ms == 60_000
        reloaded = await engine.get_assessment(assessment.id)
        assert reloaded.settings.time_limit_ms == 3_600_000

    @pytest.mark.asyncio
    async def test_unknown_option(self, engine, create_assessment):
        assessment = await create_assessment()
        with pytest.raises(ValidationError):
            await engine.start_session(assessment.id, "student-1", {"colour": "blue"})

    @pytest.mark.asyncio
    async def test_later_edits_do_not_reach_started_sessions(self, engine, create_assessment, make_question):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")

        await engine.add_questions(assessment.id, [make_question()])

        current = await engine.get_session(session.id)
        assert len(current.questions) == 5


class TestSubmitAnswer:
    @pytest.mark.asyncio
    async def test_correct_multiple_choice_answer(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        question = session.questions[0]

        result = await engine.submit_answer(session.id, question.id, question.correct_answer, 1500)

        assert result.response.is_correct is True
        assert result.response.score == question.points
        assert result.response.time_spent_ms == 1500
        assert result.feedback.type.value == "correct"
        current = await engine.get_session(session.id)
        assert current.score == question.points
        assert current.version == 2
        assert_consistent(current)

    @pytest.mark.asyncio
    async def test_three_wrong_answers_lower_remaining_questions(self, engine, events, create_assessment):
        assessment = await create_assessment(count=5, tier=DifficultyTier.INTERMEDIATE)
        session = await engine.start_session(assessment.id, "student-1")

        results = []
        for question in session.questions[:3]:
            results.append(await engine.submit_answer(session.id, question.id, WRONG, 1000))

        current = await engine.get_session(session.id)
        for question in current.questions[3:]:
            assert question.difficulty == DifficultyTier.BEGINNER
            assert question.points == 1
        for question in current.questions[:3]:
            assert question.difficulty == DifficultyTier.INTERMEDIATE
        assert results[2].adjustment.direction == AdjustmentDirection.LOWER
        assert len(events.of_type(EventType.DIFFICULTY_ADJUSTED)) == 1
        assert_consistent(current)

    @pytest.mark.asyncio
    async def test_lowered_essay_accepts_shorter_answer(self, engine, create_assessment, make_question):
        questions = [make_question() for _ in range(3)]
        questions.append({"type": "essay", "content": "Describe a triangle.", "difficulty": "intermediate"})
        assessment = await create_assessment(questions=questions)
        assert assessment.questions[3].min_words == 100
        session = await engine.start_session(assessment.id, "student-1")

        for question in session.questions[:3]:
            await engine.submit_answer(session.id, question.id, WRONG)
        essay = (await engine.get_session(session.id)).questions[3]
        assert essay.difficulty == DifficultyTier.BEGINNER
        assert essay.min_words == 50

        result = await engine.submit_answer(session.id, essay.id, " ".join(["word"] * 60))
        assert result.response.is_correct is True
        assert result.response.score == 1

    @pytest.mark.asyncio
    async def test_three_right_answers_raise_remaining_questions(self, engine, create_assessment):
        assessment = await create_assessment(count=5, tier=DifficultyTier.BEGINNER)
        session = await engine.start_session(assessment.id, "student-1")
        before = session.questions[3].difficulty

        for question in session.questions[:3]:
            await engine.submit_answer(session.id, question.id, CORRECT)

        current = await engine.get_session(session.id)
        assert current.questions[3].difficulty.rank >= before.rank
        assert current.questions[3].difficulty == DifficultyTier.INTERMEDIATE

    @pytest.mark.asyncio
    async def test_invariants_hold_throughout(self, engine, create_assessment):
        assessment = await create_assessment(count=8)
        session = await engine.start_session(assessment.id, "student-1")
        pattern = [True, True, True, False, False, False, True, False]

        for question, correct in zip(session.questions, pattern):
            await engine.submit_answer(session.id, question.id, CORRECT if correct else WRONG)
            assert_consistent(await engine.get_session(session.id))

        completion = await engine.end_session(session.id)
        assert_consistent(completion.session)

    @pytest.mark.asyncio
    async def test_response_keeps_points_at_time_of_answering(self, engine, create_assessment):
        assessment = await create_assessment(count=5, tier=DifficultyTier.INTERMEDIATE)
        session = await engine.start_session(assessment.id, "student-1")
        for question in session.questions[:4]:
            await engine.submit_answer(session.id, question.id, CORRECT)

        current = await engine.get_session(session.id)
        assert [r.points for r in current.responses] == [2, 2, 2, 3]
        assert current.score == 9

    @pytest.mark.asyncio
    async def test_duplicate_answer_is_rejected(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        question = session.questions[0]
        await engine.submit_answer(session.id, question.id, WRONG)
        before = state_of(await engine.get_session(session.id))

        with pytest.raises(InvalidStateError):
            await engine.submit_answer(session.id, question.id, CORRECT)

        assert state_of(await engine.get_session(session.id)) == before

    @pytest.mark.asyncio
    async def test_unknown_question(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        with pytest.raises(QuestionNotFoundError):
            await engine.submit_answer(session.id, "not-a-question", CORRECT)

    @pytest.mark.asyncio
    async def test_unknown_session(self, engine):
        with pytest.raises(SessionNotFoundError):
            await engine.submit_answer("missing", "question", CORRECT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer, time_spent", [
        (None, 100), (7, 100), (CORRECT, -1), (CORRECT, True), (CORRECT, "fast"),
    ])
    async def test_malformed_submission_leaves_session_untouched(
        self, engine, events, create_assessment, answer, time_spent
    ):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        before = state_of(await engine.get_session(session.id))
        published = len(events.events)

        with pytest.raises(ValidationError):
            await engine.submit_answer(session.id, session.questions[0].id, answer, time_spent)

        assert state_of(await engine.get_session(session.id)) == before
        assert len(events.events) == published

    @pytest.mark.asyncio
    async def test_feedback_hidden_by_settings(self, engine, create_assessment):
        assessment = await create_assessment(settings={"show_feedback": False})
        session = await engine.start_session(assessment.id, "student-1")

        result = await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        assert result.feedback is None
        assert result.response.score == 2

    @pytest.mark.asyncio
    async def test_feedback_failure_still_records_response(self, engine, create_assessment, make_question):
        questions = [make_question(feedback={}) for _ in range(3)]
        assessment = await create_assessment(questions=questions)
        session = await engine.start_session(assessment.id, "student-1")

        result = await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        assert result.feedback is None
        assert result.response.is_correct is True
        current = await engine.get_session(session.id)
        assert current.score == 2
        assert len(current.responses) == 1

    @pytest.mark.asyncio
    async def test_unexpected_feedback_error_is_isolated(self, engine, create_assessment, monkeypatch):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")

        def broken(*args, **kwargs):
            raise RuntimeError("template engine down")
        monkeypatch.setattr(engine.sessions.feedback, "generate_feedback", broken)

        result = await engine.submit_answer(session.id, session.questions[0].id, WRONG)
        assert result.feedback is None
        assert result.response.score == 0

    @pytest.mark.asyncio
    async def test_concurrent_submissions_are_serialised(self, engine, create_assessment):
        assessment = await create_assessment(count=10)
        session = await engine.start_session(assessment.id, "student-1")

        await asyncio.gather(*[
            engine.submit_answer(session.id, question.id, CORRECT if index % 2 else WRONG)
            for index, question in enumerate(session.questions)
        ])

        current = await engine.get_session(session.id)
        assert len(current.responses) == 10
        assert current.version == 11
        assert_consistent(current)
        stored = await engine.store.get("session", session.id)
        assert stored.version == 11
        assert stored.score == current.score

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_record_once(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        question = session.questions[0]

        results = await asyncio.gather(
            *[engine.submit_answer(session.id, question.id, CORRECT) for _ in range(4)],
            return_exceptions=True
        )

        assert sum(1 for r in results if isinstance(r, InvalidStateError)) == 3
        current = await engine.get_session(session.id)
        assert len(current.responses) == 1
        assert current.score == 2

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_state(self, engine, create_assessment):
        assessment = await create_assessment()
        first = await engine.start_session(assessment.id, "student-1")
        second = await engine.start_session(assessment.id, "student-2")

        await asyncio.gather(*[
            engine.submit_answer(first.id, q.id, WRONG) for q in first.questions[:3]
        ], *[
            engine.submit_answer(second.id, q.id, CORRECT) for q in second.questions[:3]
        ])

        first_now = await engine.get_session(first.id)
        second_now = await engine.get_session(second.id)
        assert first_now.score == 0
        assert second_now.score == 6
        assert first_now.questions[4].difficulty == DifficultyTier.BEGINNER
        assert second_now.questions[4].difficulty == DifficultyTier.ADVANCED


class TestEndAndAbandon:
    @pytest.mark.asyncio
    async def test_end_session_computes_analytics(self, engine, events, create_assessment, make_question):
        questions = [
            make_question(tier=DifficultyTier.BEGINNER),
            make_question(tier=DifficultyTier.BEGINNER),
            make_question(tier=DifficultyTier.INTERMEDIATE),
        ]
        assessment = await create_assessment(questions=questions, settings={"adaptive_enabled": False})
        session = await engine.start_session(assessment.id, "student-1")
        for question, answer in zip(session.questions, [CORRECT, WRONG, CORRECT]):
            await engine.submit_answer(session.id, question.id, answer, 2000)

        completion = await engine.end_session(session.id)

        assert [r.score for r in completion.session.responses] == [1, 0, 2]
        assert completion.analytics.score == 3
        assert completion.analytics.accuracy == pytest.approx(2 / 3 * 100)
        assert completion.analytics.max_score == 4
        assert completion.analytics.average_time_per_question_ms == 2000
        assert completion.session.status == SessionStatus.COMPLETED
        assert completion.session.end_time is not None
        assert events.of_type(EventType.SESSION_COMPLETED)[0].payload["score"] == 3

    @pytest.mark.asyncio
    async def test_end_without_answers(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")

        completion = await engine.end_session(session.id)

        assert completion.analytics.accuracy == 0
        assert completion.analytics.answered_questions == 0
        assert completion.analytics.total_questions == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("finish", ["end", "abandon"])
    async def test_terminal_sessions_reject_answers(self, engine, create_assessment, finish):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        await engine.submit_answer(session.id, session.questions[0].id, CORRECT)
        if finish == "end":
            await engine.end_session(session.id)
        else:
            await engine.abandon_session(session.id)
        before = state_of(await engine.get_session(session.id))

        with pytest.raises(InvalidStateError):
            await engine.submit_answer(session.id, session.questions[1].id, CORRECT)
        with pytest.raises(InvalidStateError):
            await engine.end_session(session.id)
        with pytest.raises(InvalidStateError):
            await engine.abandon_session(session.id)

        assert state_of(await engine.get_session(session.id)) == before

    @pytest.mark.asyncio
    async def test_abandon_keeps_responses(self, engine, events, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        completion = await engine.abandon_session(session.id, reason="browser closed")

        assert completion.session.status == SessionStatus.ABANDONED
        assert completion.analytics.score == 2
        assert completion.session.score <= completion.session.max_score
        assert events.of_type(EventType.SESSION_ABANDONED)[0].payload["reason"] == "browser closed"

    @pytest.mark.asyncio
    async def test_terminal_session_leaves_the_registry(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        assert session.id in engine.sessions.registry

        await engine.end_session(session.id)

        assert session.id not in engine.sessions.registry
        assert session.id not in engine.sessions._persisted_versions
        stored = await engine.get_session(session.id)
        assert stored.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_snapshot_after_retirement_is_dropped(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        await engine.submit_answer(session.id, session.questions[0].id, CORRECT)
        in_flight = await engine.get_session(session.id)
        await engine.end_session(session.id)

        await engine.sessions._persist(in_flight)

        stored = await engine.store.get("session", session.id)
        assert stored.status == SessionStatus.COMPLETED
        assert session.id not in engine.sessions.registry

    @pytest.mark.asyncio
    async def test_many_sessions_leave_no_bookkeeping(self, engine, create_assessment):
        assessment = await create_assessment()
        for _ in range(20):
            session = await engine.start_session(assessment.id, "student-1")
            await engine.end_session(session.id)

        assert len(engine.sessions.registry) == 0
        assert engine.sessions._persisted_versions == {}

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        session.score = 99
        session.questions.clear()

        current = await engine.get_session(session.id)
        assert current.score == 0
        assert len(current.questions) == 5


class TestCollaborators:
    @pytest.mark.asyncio
    async def test_store_failure_surfaces_as_store_error(self, events, rng, clock, create_assessment):
        class FlakyStore(MemoryStore):
            fail = False

            async def save(self, entity):
                if self.fail and entity.ENTITY_KIND == "session":
                    raise RuntimeError("disk full")
                return await super().save(entity)

        store = FlakyStore(ENTITY_TYPES)
        engine = AssessmentEngine(store=store, events=events, rng=rng, clock=clock)
        assessment = await engine.create_assessment({"subject": "mathematics", "auto_generate": True,
                                                      "question_count": 3, "question_types": ["short_answer"],
                                                      "settings": {"randomize_questions": False}})
        session = await engine.start_session(assessment.id, "student-1")

        store.fail = True
        question = session.questions[0]
        with pytest.raises(StoreError):
            await engine.submit_answer(session.id, question.id, question.correct_answer)

        # The in-memory change stands and the next save catches the store up
        assert len((await engine.get_session(session.id)).responses) == 1
        store.fail = False
        await engine.submit_answer(session.id, session.questions[1].id, "wrong")
        stored = await store.get("session", session.id)
        assert len(stored.responses) == 2

    @pytest.mark.asyncio
    async def test_event_failure_surfaces_as_delivery_error(self, store, rng, clock):
        dispatcher = EventDispatcher()

        def broken(event):
            raise RuntimeError("queue unavailable")
        dispatcher.subscribe(EventType.ANSWER_SUBMITTED, broken)

        engine = AssessmentEngine(store=store, events=dispatcher, rng=rng, clock=clock)
        assessment = await engine.create_assessment({"subject": "science", "auto_generate": True,
                                                      "question_count": 2, "question_types": ["short_answer"]})
        session = await engine.start_session(assessment.id, "student-1")

        with pytest.raises(EventDeliveryError):
            await engine.submit_answer(session.id, session.questions[0].id, "anything")

        stored = await store.get("session", session.id)
        assert len(stored.responses) == 1

    @pytest.mark.asyncio
    async def test_failing_integrity_monitor_is_isolated(self, store, events, rng, clock, make_question):
        class BrokenMonitor(IntegrityMonitor):
            def inspect(self, session):
                raise RuntimeError("monitor crashed")

        engine = AssessmentEngine(store=store, events=events, rng=rng, clock=clock, monitors=[BrokenMonitor()])
        assessment = await engine.create_assessment({"subject": "mathematics",
                                                      "questions": [make_question() for _ in range(3)]})
        session = await engine.start_session(assessment.id, "student-1")

        result = await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        assert result.response.score == 2
        current = await engine.get_session(session.id)
        assert current.version == 2
        assert current.integrity_flags == []
        stored = await store.get("session", session.id)
        assert len(stored.responses) == 1
        assert stored.score == 2

    @pytest.mark.asyncio
    async def test_failing_strategy_leaves_session_unchanged(self, store, events, rng, clock, make_question):
        class OnceBrokenStrategy(RollingWindowStrategy):
            broken = True

            def decide(self, responses):
                if self.broken:
                    self.broken = False
                    raise RuntimeError("strategy crashed")
                return super().decide(responses)

        engine = AssessmentEngine(store=store, events=events, rng=rng, clock=clock, strategy=OnceBrokenStrategy())
        assessment = await engine.create_assessment({"subject": "mathematics",
                                                      "questions": [make_question() for _ in range(3)]})
        session = await engine.start_session(assessment.id, "student-1")
        question = session.questions[0]
        before = state_of(await engine.get_session(session.id))

        with pytest.raises(RuntimeError):
            await engine.submit_answer(session.id, question.id, CORRECT)
        assert state_of(await engine.get_session(session.id)) == before

        result = await engine.submit_answer(session.id, question.id, CORRECT)
        assert result.response.score == 2
        stored = await store.get("session", session.id)
        assert len(stored.responses) == 1
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_stale_snapshot_never_overwrites_newer(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        stale = copy.deepcopy(session)
        await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        await engine.sessions._persist(stale)

        stored = await engine.store.get("session", session.id)
        assert stored.version == 2
        assert len(stored.responses) == 1

    @pytest.mark.asyncio
    async def test_active_sessions_restored_on_start(self, store, events, rng, clock, create_assessment, engine):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        await engine.submit_answer(session.id, session.questions[0].id, CORRECT)

        restarted = AssessmentEngine(store=store, events=events, rng=rng, clock=clock)
        await restarted.start()
        assert session.id in restarted.sessions.registry

        with pytest.raises(ConflictError):
            await restarted.start_session(assessment.id, "student-1")
        result = await restarted.submit_answer(session.id, session.questions[1].id, CORRECT)
        assert result.response.score == 2
        assert (await restarted.get_session(session.id)).version == 3
        await restarted.shutdown()


class TestIntegrityEvents:
    @pytest.mark.asyncio
    async def test_external_flag_is_recorded(self, engine, events, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")

        flag = await engine.record_integrity_event(session.id, "tab_switch", "left the page", {"count": 2})

        assert flag.source == "external"
        current = await engine.get_session(session.id)
        assert current.integrity_flags[0].kind == "tab_switch"
        assert current.score == 0
        assert events.of_type(EventType.INTEGRITY_FLAGGED)[0].payload["kind"] == "tab_switch"

    @pytest.mark.asyncio
    async def test_flag_requires_active_session(self, engine, create_assessment):
        assessment = await create_assessment()
        session = await engine.start_session(assessment.id, "student-1")
        await engine.end_session(session.id)
        with pytest.raises(InvalidStateError):
            await engine.record_integrity_event(session.id, "copy_paste")

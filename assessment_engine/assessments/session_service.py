"""
Session Service

This module runs student sessions through their lifecycle
(active -> completed | abandoned):
1. Starting a session from a snapshot of an assessment's questions
2. Recording answers: evaluation, scoring, difficulty adaptation, feedback
3. Ending or abandoning a session and computing its analytics

Every mutation of a session happens under that session's lock; sessions
never share a lock. Persistence and event publication happen after the lock
is released, and snapshots are persisted in version order.
"""

import copy
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from assessment_engine.common.config import EngineConfig
from assessment_engine.common.error_handling import (
    AssessmentNotFoundError, ConflictError, EngineError, EventDeliveryError, InvalidStateError,
    QuestionNotFoundError, SessionNotFoundError, StoreError, ValidationError
)
from assessment_engine.common.events import DomainEvent, EventSink, EventType
from assessment_engine.common.locking import KeyedLockRegistry
from assessment_engine.common.logger import app_logger, with_context
from assessment_engine.common.store import Store
from assessment_engine.assessments.adaptive_difficulty import AdaptiveDifficultyController
from assessment_engine.assessments.analytics import compute_session_analytics
from assessment_engine.assessments.evaluation import AnswerEvaluator
from assessment_engine.assessments.feedback import FeedbackGenerator
from assessment_engine.assessments.integrity import IntegrityMonitor
from assessment_engine.assessments.models import (
    Assessment, AssessmentStatus, DifficultyAdjustment, Feedback, IntegrityFlag, Response,
    Session, SessionAnalytics, SessionStatus, utcnow
)

# Module logger
logger = app_logger.getChild("session_service")


@dataclass
class SubmissionResult:
    """Outcome of an answer submission."""
    response: Response
    feedback: Optional[Feedback]
    adjustment: Optional[DifficultyAdjustment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response.to_dict(),
            "feedback": self.feedback.to_dict() if self.feedback else None,
            "adjustment": self.adjustment.to_dict() if self.adjustment else None,
        }


@dataclass
class SessionCompletion:
    """A finished session together with its analytics."""
    session: Session
    analytics: SessionAnalytics

    def to_dict(self) -> Dict[str, Any]:
        return {"session": self.session.to_dict(), "analytics": self.analytics.to_dict()}


def fisher_yates_shuffle(items: List[Any], rng: random.Random) -> None:
    """Shuffle a list in place."""
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


class SessionRegistry:
    """
    In-memory registry of live sessions with a lock per session.

    A session stays registered from start until its terminal snapshot has
    been persisted.
    """

    def __init__(self, shards: int = 64):
        self._sessions: Dict[str, Session] = {}
        self._locks = KeyedLockRegistry(shards)

    def add(self, session: Session) -> Session:
        """Register a session unless one with the same ID already is; returns the registered one."""
        existing = self._sessions.get(session.id)
        if existing is not None:
            return existing
        self._sessions[session.id] = session
        self._locks.retain(session.id)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.release(session_id)

    def lock(self, key: str):
        """Async context manager holding the lock for a session (or any other key)."""
        return self._locks.hold(key)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def active_sessions(self) -> List[Session]:
        return [session for session in self._sessions.values() if session.is_active]

    def find_active(self, assessment_id: str, student_id: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.is_active and session.assessment_id == assessment_id and session.student_id == student_id:
                return session
        return None

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    """Owns the session lifecycle."""

    def __init__(
        self,
        store: Store,
        evaluator: AnswerEvaluator,
        adaptive: AdaptiveDifficultyController,
        feedback: FeedbackGenerator,
        events: Optional[EventSink] = None,
        monitors: Optional[List[IntegrityMonitor]] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable = utcnow
    ):
        """
        Initialize the session manager.

        Args:
            store: Persistence collaborator for assessments and sessions
            evaluator: Answer evaluation strategy
            adaptive: Difficulty controller run after each answer
            feedback: Feedback generator run after each answer
            events: Optional event sink for domain events
            monitors: Integrity monitors run after each answer
            config: Engine configuration
            rng: Random source for question shuffling
            clock: Callable returning the current aware datetime
        """
        self.config = config or EngineConfig()
        self.store = store
        self.evaluator = evaluator
        self.adaptive = adaptive
        self.feedback = feedback
        self.events = events
        self.monitors = list(monitors or [])
        self.rng = rng or random.Random()
        self.clock = clock
        self.registry = SessionRegistry(self.config.lock_shards)
        self._persist_locks = KeyedLockRegistry(self.config.lock_shards)
        self._persisted_versions: Dict[str, int] = {}

    #--------------------------------------------------------------------------
    # Lifecycle operations
    #--------------------------------------------------------------------------

    async def start_session(
        self,
        assessment_id: str,
        student_id: str,
        options: Optional[Dict[str, Any]] = None
    ) -> Session:
        """
        Start a session for a student.

        Args:
            assessment_id: Assessment to attempt
            student_id: Opaque student identifier
            options: Setting overrides for this session only

        Returns:
            A snapshot of the new session

        Raises:
            AssessmentNotFoundError: If the assessment does not exist
            InvalidStateError: If the assessment is archived
            ValidationError: If the options are invalid or the assessment has no questions
            ConflictError: If retakes are not allowed and the student has an active session
        """
        if not student_id:
            raise ValidationError("Student ID is required")

        assessment: Optional[Assessment] = await self._store_call(self.store.get, Assessment.ENTITY_KIND, assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(assessment_id)
        if assessment.status == AssessmentStatus.ARCHIVED:
            raise InvalidStateError(
                f"Assessment {assessment_id} is archived", details={"assessment_id": assessment_id}
            )
        if not assessment.questions:
            raise ValidationError(
                f"Assessment {assessment_id} has no questions", details={"assessment_id": assessment_id}
            )
        settings = assessment.settings.merged(options)

        async with self.registry.lock(f"start:{assessment_id}:{student_id}"):
            if not settings.allow_retakes:
                existing = self.registry.find_active(assessment_id, student_id)
                if existing is not None:
                    raise ConflictError(
                        f"Student {student_id} already has an active session for assessment {assessment_id}",
                        details={"assessment_id": assessment_id, "student_id": student_id, "session_id": existing.id}
                    )

            questions = copy.deepcopy(assessment.questions)
            if settings.randomize_questions:
                fisher_yates_shuffle(questions, self.rng)

            session = Session(
                assessment_id=assessment_id,
                student_id=student_id,
                questions=questions,
                settings=settings,
                start_time=self.clock(),
                version=1,
            )
            session.check_invariants()
            self.registry.add(session)
            snapshot = copy.deepcopy(session)

        log = with_context(logger, session_id=session.id, assessment_id=assessment_id, student_id=student_id)
        log.info(f"Started session with {len(questions)} questions")

        await self._persist(snapshot)
        await self._publish(EventType.SESSION_STARTED, {
            "session_id": snapshot.id,
            "assessment_id": assessment_id,
            "student_id": student_id,
            "question_count": len(snapshot.questions),
        })
        return snapshot

    async def submit_answer(
        self,
        session_id: str,
        question_id: str,
        answer: Any,
        time_spent_ms: Union[int, float] = 0
    ) -> SubmissionResult:
        """
        Record an answer to one of a session's questions.

        All checks happen before any mutation; a rejected submission leaves
        the session untouched.

        Args:
            session_id: Session ID
            question_id: ID of a question in the session's snapshot
            answer: The submitted answer
            time_spent_ms: Time the student spent on the question

        Returns:
            The recorded response and its feedback

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not active or the question was already answered
            QuestionNotFoundError: If the question is not part of the session
            ValidationError: If the answer or time is malformed
        """
        session = await self._resolve(session_id)
        log = with_context(logger, session_id=session_id, question_id=question_id)

        async with self.registry.lock(session_id):
            session = self.registry.get(session_id) or session
            self._require_active(session)
            question = session.get_question(question_id)
            if question is None:
                raise QuestionNotFoundError(question_id, session_id)
            if question_id in session.answered_ids:
                raise InvalidStateError(
                    f"Question {question_id} has already been answered",
                    details={"session_id": session_id, "question_id": question_id}
                )
            if isinstance(time_spent_ms, bool) or not isinstance(time_spent_ms, (int, float)) or time_spent_ms < 0:
                raise ValidationError(
                    "Time spent must be a non-negative number of milliseconds",
                    details={"time_spent_ms": time_spent_ms}
                )
            self.evaluator.validate_answer(question, answer)

            is_correct = self.evaluator.evaluate(question, answer)
            response = Response(
                question_id=question_id,
                answer=answer,
                is_correct=is_correct,
                score=question.points if is_correct else 0,
                time_spent_ms=int(round(time_spent_ms)),
                difficulty=question.difficulty,
                points=question.points,
                timestamp=self.clock(),
            )

            checkpoint = copy.deepcopy(session)
            try:
                session.responses.append(response)
                session.score += response.score

                adjustment = self.adaptive.adapt(session)
                response.feedback = self._generate_feedback(session, question, answer, is_correct)

                new_flags = self._inspect(session)
                session.integrity_flags.extend(new_flags)

                session.version += 1
                session.check_invariants()
            except Exception:
                # The answer is not recorded; the caller may retry
                vars(session).update(vars(checkpoint))
                raise
            snapshot = copy.deepcopy(session)

        log.debug(f"Recorded answer: correct={is_correct}, score={snapshot.score}/{snapshot.max_score}")
        for flag in new_flags:
            log.warning(f"Integrity flag raised: {flag.kind} ({flag.detail})")

        await self._persist(snapshot)
        await self._publish(EventType.ANSWER_SUBMITTED, {
            "session_id": session_id,
            "assessment_id": snapshot.assessment_id,
            "student_id": snapshot.student_id,
            "question_id": question_id,
            "is_correct": is_correct,
            "score": response.score,
            "session_score": snapshot.score,
        })
        if adjustment is not None:
            await self._publish(EventType.DIFFICULTY_ADJUSTED, {
                "session_id": session_id,
                **adjustment.to_dict(),
            })
        for flag in new_flags:
            await self._publish(EventType.INTEGRITY_FLAGGED, {"session_id": session_id, **flag.to_dict()})

        recorded = snapshot.responses[-1]
        return SubmissionResult(
            response=recorded,
            feedback=recorded.feedback,
            adjustment=snapshot.adjustments[-1] if adjustment is not None else None,
        )

    async def end_session(self, session_id: str) -> SessionCompletion:
        """
        Complete a session and compute its analytics.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not active
        """
        snapshot = await self._finish(session_id, SessionStatus.COMPLETED)
        with_context(logger, session_id=session_id).info(
            f"Completed session: score {snapshot.score}/{snapshot.max_score}"
        )
        await self._persist(snapshot)
        await self._publish(EventType.SESSION_COMPLETED, {
            "session_id": session_id,
            "assessment_id": snapshot.assessment_id,
            "student_id": snapshot.student_id,
            "score": snapshot.score,
            "max_score": snapshot.max_score,
            "accuracy": snapshot.analytics.accuracy,
        })
        return SessionCompletion(session=snapshot, analytics=snapshot.analytics)

    async def abandon_session(self, session_id: str, reason: str = "abandoned") -> SessionCompletion:
        """
        Force an active session into the abandoned state.

        Used by supervisors (time limits) and callers that give up on a
        session; responses recorded so far are kept.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not active
        """
        snapshot = await self._finish(session_id, SessionStatus.ABANDONED)
        with_context(logger, session_id=session_id).info(f"Abandoned session: {reason}")
        await self._persist(snapshot)
        await self._publish(EventType.SESSION_ABANDONED, {
            "session_id": session_id,
            "assessment_id": snapshot.assessment_id,
            "student_id": snapshot.student_id,
            "reason": reason,
            "score": snapshot.score,
        })
        return SessionCompletion(session=snapshot, analytics=snapshot.analytics)

    async def record_integrity_event(
        self,
        session_id: str,
        kind: str,
        detail: str = "",
        metadata: Optional[Dict[str, Any]] = None
    ) -> IntegrityFlag:
        """
        Attach an externally observed integrity flag to an active session.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not active
            ValidationError: If no kind is given
        """
        if not kind:
            raise ValidationError("Integrity event kind is required")
        session = await self._resolve(session_id)
        async with self.registry.lock(session_id):
            session = self.registry.get(session_id) or session
            self._require_active(session)
            flag = IntegrityFlag(
                kind=kind, detail=detail, source="external", metadata=dict(metadata or {}), timestamp=self.clock()
            )
            session.integrity_flags.append(flag)
            session.version += 1
            snapshot = copy.deepcopy(session)

        with_context(logger, session_id=session_id).warning(f"Integrity event recorded: {kind}")
        await self._persist(snapshot)
        await self._publish(EventType.INTEGRITY_FLAGGED, {"session_id": session_id, **flag.to_dict()})
        return flag

    async def get_session(self, session_id: str) -> Session:
        """
        Get a snapshot of a session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = self.registry.get(session_id)
        if session is not None:
            return copy.deepcopy(session)
        stored = await self._store_call(self.store.get, Session.ENTITY_KIND, session_id)
        if stored is None:
            raise SessionNotFoundError(session_id)
        return stored

    async def list_sessions(self, assessment_id: str) -> List[Session]:
        """
        Get snapshots of every session of an assessment.

        Live sessions take precedence over their stored copies.
        """
        stored = await self._store_call(self.store.query, Session.ENTITY_KIND, {"assessment_id": assessment_id})
        sessions = {session.id: session for session in stored}
        for session in self.registry.sessions():
            if session.assessment_id == assessment_id:
                sessions[session.id] = copy.deepcopy(session)
        return list(sessions.values())

    def active_sessions(self) -> List[Session]:
        """Snapshots of the active sessions held in memory."""
        return [copy.deepcopy(session) for session in self.registry.active_sessions()]

    async def restore_active_sessions(self) -> int:
        """
        Load active sessions from the store into the registry.

        Returns:
            Number of sessions restored
        """
        stored = await self._store_call(
            self.store.query, Session.ENTITY_KIND, {"status": SessionStatus.ACTIVE.value}
        )
        restored = 0
        for session in stored:
            if session.id not in self.registry:
                self.registry.add(session)
                self._persisted_versions[session.id] = session.version
                restored += 1
        if restored:
            logger.info(f"Restored {restored} active session(s) from the store")
        return restored

    #--------------------------------------------------------------------------
    # Internals
    #--------------------------------------------------------------------------

    async def _finish(self, session_id: str, status: SessionStatus) -> Session:
        session = await self._resolve(session_id)
        async with self.registry.lock(session_id):
            session = self.registry.get(session_id) or session
            self._require_active(session)
            session.end_time = self.clock()
            session.status = status
            session.analytics = compute_session_analytics(session)
            session.version += 1
            session.check_invariants()
            return copy.deepcopy(session)

    async def _resolve(self, session_id: str) -> Session:
        """Find a session in the registry, loading active ones from the store."""
        session = self.registry.get(session_id)
        if session is not None:
            return session
        stored = await self._store_call(self.store.get, Session.ENTITY_KIND, session_id)
        if stored is None:
            raise SessionNotFoundError(session_id)
        if not stored.is_active:
            return stored
        # Another task may have loaded it while the store call was pending
        session = self.registry.add(stored)
        self._persisted_versions.setdefault(session_id, stored.version)
        return session

    @staticmethod
    def _require_active(session: Session) -> None:
        if not session.is_active:
            raise InvalidStateError(
                f"Session {session.id} is {session.status.value}",
                details={"session_id": session.id, "status": session.status.value}
            )

    def _generate_feedback(self, session: Session, question, answer: Any, is_correct: bool) -> Optional[Feedback]:
        if not session.settings.show_feedback:
            return None
        try:
            return self.feedback.generate_feedback(question, answer, is_correct)
        except Exception as e:
            # The response is recorded without feedback
            with_context(logger, session_id=session.id, question_id=question.id).error(
                f"Feedback generation failed: {e}", exc_info=e
            )
            return None

    def _inspect(self, session: Session) -> List[IntegrityFlag]:
        flags: List[IntegrityFlag] = []
        for monitor in self.monitors:
            try:
                flags.extend(monitor.inspect(session))
            except Exception as e:
                # Skip the failing monitor; the answer still counts
                with_context(logger, session_id=session.id).error(
                    f"Integrity monitor {type(monitor).__name__} failed: {e}", exc_info=e
                )
        return flags

    async def _persist(self, snapshot: Session) -> None:
        """
        Save a snapshot unless a newer version of the session is already stored.

        Once a terminal snapshot is stored the session is retired: it leaves
        the registry and any snapshot of it still in flight is dropped.
        """
        async with self._persist_locks.hold(snapshot.id):
            if snapshot.id not in self.registry:
                logger.debug(f"Skipping snapshot v{snapshot.version} of retired session {snapshot.id}")
                return
            if self._persisted_versions.get(snapshot.id, 0) >= snapshot.version:
                logger.debug(f"Skipping stale snapshot v{snapshot.version} of session {snapshot.id}")
                return
            await self._store_call(self.store.save, snapshot)
            self._persisted_versions[snapshot.id] = snapshot.version

            if not snapshot.is_active:
                live = self.registry.get(snapshot.id)
                if live is not None and live.version == snapshot.version:
                    self.registry.remove(snapshot.id)
                    self._persisted_versions.pop(snapshot.id, None)

    async def _store_call(self, method, *args):
        try:
            return await method(*args)
        except EngineError:
            raise
        except Exception as e:
            raise StoreError(f"Store operation {method.__name__} failed", cause=e)

    async def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self.events is None:
            return
        event = DomainEvent(event_type=event_type, payload=payload)
        try:
            await self.events.publish(event)
        except EventDeliveryError:
            raise
        except Exception as e:
            raise EventDeliveryError(f"Failed to publish {event.name}", cause=e)

"""
Assessment Engine

The AssessmentEngine wires the registry, question generator, session
manager and analytics together behind one object. Callers create one engine
per process, call ``start()`` before use and ``shutdown()`` when done.
"""

import random
from typing import Any, Dict, List, Optional, Union

from assessment_engine.common.config import EngineConfig, get_config
from assessment_engine.common.events import EventDispatcher, EventSink
from assessment_engine.common.logger import app_logger
from assessment_engine.common.store import MemoryStore, SQLAlchemyStore, Store
from assessment_engine.assessments.adaptive_difficulty import (
    AdaptiveDifficultyController, DifficultyStrategy, RollingWindowStrategy
)
from assessment_engine.assessments.analytics import AnalyticsService, AssessmentReport
from assessment_engine.assessments.evaluation import AnswerEvaluator, RuleBasedEvaluator
from assessment_engine.assessments.feedback import FeedbackGenerator
from assessment_engine.assessments.integrity import IntegrityMonitor, RapidAnswerMonitor, TimeLimitSupervisor
from assessment_engine.assessments.models import (
    ENTITY_TYPES, Assessment, AssessmentStatus, DifficultyTier, IntegrityFlag, Question, QuestionType, Session
)
from assessment_engine.assessments.question_generator import QuestionGenerator
from assessment_engine.assessments.registry import AssessmentRegistry
from assessment_engine.assessments.session_service import (
    SessionCompletion, SessionManager, SubmissionResult
)
from assessment_engine.assessments.templates import TemplateLibrary

# Module logger
logger = app_logger.getChild("engine")


class AssessmentEngine:
    """Public entry point of the adaptive assessment engine."""

    def __init__(
        self,
        store: Optional[Store] = None,
        events: Optional[EventSink] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        library: Optional[TemplateLibrary] = None,
        evaluator: Optional[AnswerEvaluator] = None,
        strategy: Optional[DifficultyStrategy] = None,
        feedback: Optional[FeedbackGenerator] = None,
        monitors: Optional[List[IntegrityMonitor]] = None,
        clock=None
    ):
        """
        Initialize the engine.

        Every collaborator is optional; defaults follow the configuration.

        Args:
            store: Persistence for assessments and sessions (in-memory by default)
            events: Event sink (an in-process EventDispatcher by default)
            config: Engine configuration
            rng: Random source shared by generation, shuffling and encouragement
            library: Question template library
            evaluator: Answer evaluation strategy
            strategy: Difficulty adaptation strategy
            feedback: Feedback generator
            monitors: Integrity monitors run after each answer
            clock: Callable returning the current aware datetime
        """
        self.config = config or EngineConfig()
        self.rng = rng or random.Random(self.config.random_seed)
        self.store = store or MemoryStore(ENTITY_TYPES)
        self.events = events if events is not None else EventDispatcher()

        self.generator = QuestionGenerator(library, self.rng)
        self.registry = AssessmentRegistry(self.store, self.generator, self.events, self.config)
        self.analytics = AnalyticsService()

        session_kwargs = {"clock": clock} if clock is not None else {}
        self.sessions = SessionManager(
            store=self.store,
            evaluator=evaluator or RuleBasedEvaluator(self.config.essay_min_words),
            adaptive=AdaptiveDifficultyController(strategy or RollingWindowStrategy(
                self.config.adaptive_window, self.config.raise_threshold, self.config.lower_threshold
            )),
            feedback=feedback or FeedbackGenerator(self.config.max_hints, self.rng),
            events=self.events,
            monitors=monitors if monitors is not None else [RapidAnswerMonitor(
                self.config.rapid_answer_threshold, self.config.rapid_answer_window_ms
            )],
            config=self.config,
            rng=self.rng,
            **session_kwargs
        )
        self.supervisor = TimeLimitSupervisor(self.sessions)
        self._started = False

    @classmethod
    def from_config(cls, events: Optional[EventSink] = None) -> 'AssessmentEngine':
        """Build an engine from the loaded application configuration."""
        app_config = get_config()
        store: Store
        if app_config.database.url:
            store = SQLAlchemyStore(app_config.database.url, app_config.database.echo, ENTITY_TYPES)
        else:
            store = MemoryStore(ENTITY_TYPES)
        return cls(store=store, events=events, config=app_config.engine)

    async def start(self) -> None:
        """Open the store and restore active sessions."""
        if self._started:
            return
        await self.store.start()
        restored = await self.sessions.restore_active_sessions()
        self._started = True
        logger.info(f"Assessment engine started ({type(self.store).__name__}, {restored} active session(s))")

    async def shutdown(self) -> None:
        """Close the store."""
        if not self._started:
            return
        await self.store.close()
        self._started = False
        logger.info("Assessment engine stopped")

    #--------------------------------------------------------------------------
    # Assessments
    #--------------------------------------------------------------------------

    async def create_assessment(self, spec: Dict[str, Any]) -> Assessment:
        return await self.registry.create_assessment(spec)

    def generate_questions(
        self,
        subject: str,
        difficulty: Union[DifficultyTier, str],
        count: int,
        question_types: Optional[List[Union[QuestionType, str]]] = None
    ) -> List[Question]:
        return self.generator.generate_questions(subject, difficulty, count, question_types)

    async def get_assessment(self, assessment_id: str) -> Assessment:
        return await self.registry.get_assessment(assessment_id)

    async def list_assessments(
        self,
        subject: Optional[str] = None,
        status: Optional[Union[AssessmentStatus, str]] = None,
        created_by: Optional[str] = None
    ) -> List[Assessment]:
        return await self.registry.list_assessments(subject, status, created_by)

    async def update_assessment(self, assessment_id: str, changes: Dict[str, Any]) -> Assessment:
        return await self.registry.update_assessment(assessment_id, changes)

    async def add_questions(self, assessment_id: str, questions: List[Any]) -> Assessment:
        return await self.registry.add_questions(assessment_id, questions)

    async def publish_assessment(self, assessment_id: str) -> Assessment:
        return await self.registry.publish_assessment(assessment_id)

    async def archive_assessment(self, assessment_id: str) -> Assessment:
        return await self.registry.archive_assessment(assessment_id)

    async def generate_assessment_report(self, assessment_id: str) -> AssessmentReport:
        """
        Build the analytics report of an assessment over all its sessions.

        The assessment's analytics cache is refreshed and persisted.

        Raises:
            AssessmentNotFoundError: If the assessment does not exist
        """
        assessment = await self.registry.get_assessment(assessment_id)
        sessions = await self.sessions.list_sessions(assessment_id)
        report = self.analytics.generate_report(assessment, sessions)
        await self.registry.store_analytics(assessment_id, assessment.analytics)
        return report

    #--------------------------------------------------------------------------
    # Sessions
    #--------------------------------------------------------------------------

    async def start_session(
        self,
        assessment_id: str,
        student_id: str,
        options: Optional[Dict[str, Any]] = None
    ) -> Session:
        return await self.sessions.start_session(assessment_id, student_id, options)

    async def submit_answer(
        self,
        session_id: str,
        question_id: str,
        answer: Any,
        time_spent_ms: Union[int, float] = 0
    ) -> SubmissionResult:
        return await self.sessions.submit_answer(session_id, question_id, answer, time_spent_ms)

    async def end_session(self, session_id: str) -> SessionCompletion:
        return await self.sessions.end_session(session_id)

    async def abandon_session(self, session_id: str, reason: str = "abandoned") -> SessionCompletion:
        return await self.sessions.abandon_session(session_id, reason)

    async def get_session(self, session_id: str) -> Session:
        return await self.sessions.get_session(session_id)

    async def record_integrity_event(
        self,
        session_id: str,
        kind: str,
        detail: str = "",
        metadata: Optional[Dict[str, Any]] = None
    ) -> IntegrityFlag:
        return await self.sessions.record_integrity_event(session_id, kind, detail, metadata)

    async def sweep_expired_sessions(self, now=None) -> List[str]:
        """Abandon active sessions past their time limit; returns their IDs."""
        return await self.supervisor.sweep(now)

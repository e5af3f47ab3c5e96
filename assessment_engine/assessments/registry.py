"""
Assessment Registry

This module manages assessment definitions:
1. Creation from a plain specification, optionally auto-generating questions
2. Draft-only edits and append-only question additions after publishing
3. The draft -> published -> archived lifecycle
"""

import copy
from typing import Any, Dict, List, Optional, Union

from assessment_engine.common.config import EngineConfig
from assessment_engine.common.error_handling import (
    AssessmentNotFoundError, EngineError, EventDeliveryError, InvalidStateError, StoreError, ValidationError
)
from assessment_engine.common.events import DomainEvent, EventSink, EventType
from assessment_engine.common.locking import KeyedLockRegistry
from assessment_engine.common.logger import app_logger
from assessment_engine.common.store import Store
from assessment_engine.assessments.models import (
    Assessment, AssessmentAnalyticsCache, AssessmentSettings, AssessmentStatus, AssessmentType, DifficultyTier,
    Question, QuestionType, _coerce_enum
)
from assessment_engine.assessments.question_generator import QuestionGenerator
from assessment_engine.assessments.templates import (
    DEFAULT_FEEDBACK, essay_min_words_for, estimated_time_for, points_for
)

# Module logger
logger = app_logger.getChild("registry")

CREATE_FIELDS = {
    "title", "description", "subject", "difficulty", "type", "settings", "questions",
    "auto_generate", "question_count", "question_types", "created_by",
}
UPDATE_FIELDS = {"title", "description", "difficulty", "type", "settings", "questions"}


def _with_derived_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in an authored question's tier-derived fields and default feedback."""
    values = dict(data)
    tier = _coerce_enum(DifficultyTier, values.get("difficulty", DifficultyTier.INTERMEDIATE), "difficulty")
    question_type = _coerce_enum(QuestionType, values.get("type"), "question type")
    values["difficulty"] = tier
    values.setdefault("points", points_for(tier))
    values["estimated_time_ms"] = estimated_time_for(tier, question_type)
    if not values.get("feedback"):
        values["feedback"] = dict(DEFAULT_FEEDBACK)
    if question_type == QuestionType.ESSAY and values.get("min_words") is None:
        values["min_words"] = essay_min_words_for(tier)
    return values


class AssessmentRegistry:
    """Creates, edits and transitions assessment definitions."""

    def __init__(
        self,
        store: Store,
        generator: QuestionGenerator,
        events: Optional[EventSink] = None,
        config: Optional[EngineConfig] = None
    ):
        self.config = config or EngineConfig()
        self.store = store
        self.generator = generator
        self.events = events
        self._locks = KeyedLockRegistry(self.config.lock_shards)

    async def create_assessment(self, spec: Dict[str, Any]) -> Assessment:
        """
        Create a draft assessment.

        Args:
            spec: Assessment specification. ``subject`` is required; with
                ``auto_generate`` set, ``question_count`` questions (the
                configured default when absent) are generated at the
                assessment's difficulty.

        Returns:
            The created assessment

        Raises:
            ValidationError: If the specification is malformed
            UnknownSubjectError: If questions are auto-generated for an unknown subject
        """
        unknown = set(spec) - CREATE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown assessment fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        subject = spec.get("subject")
        if not isinstance(subject, str) or not subject.strip():
            raise ValidationError("Assessment subject is required")
        subject = subject.strip()
        difficulty = _coerce_enum(DifficultyTier, spec.get("difficulty", DifficultyTier.INTERMEDIATE), "difficulty")

        questions = self._build_questions(spec.get("questions") or [])
        if spec.get("auto_generate"):
            count = spec.get("question_count", self.config.default_question_count)
            questions.extend(self.generator.generate_questions(
                subject, difficulty, count, spec.get("question_types")
            ))

        settings = AssessmentSettings(time_limit_ms=self.config.default_time_limit_ms).merged(spec.get("settings"))
        assessment = Assessment(
            title=spec.get("title") or f"{subject.title()} Assessment",
            description=spec.get("description") or "",
            subject=subject,
            difficulty=difficulty,
            type=spec.get("type", AssessmentType.ADAPTIVE),
            questions=questions,
            settings=settings,
            created_by=spec.get("created_by"),
        )

        await self._save(assessment)
        logger.info(f"Created assessment {assessment.id} ({subject}) with {len(questions)} questions")
        await self._publish(EventType.ASSESSMENT_CREATED, {
            "assessment_id": assessment.id,
            "title": assessment.title,
            "subject": assessment.subject,
            "question_count": len(assessment.questions),
            "created_by": assessment.created_by,
        })
        return assessment

    async def get_assessment(self, assessment_id: str) -> Assessment:
        """
        Get an assessment.

        Raises:
            AssessmentNotFoundError: If the assessment does not exist
        """
        try:
            assessment = await self.store.get(Assessment.ENTITY_KIND, assessment_id)
        except EngineError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to load assessment {assessment_id}", cause=e)
        if assessment is None:
            raise AssessmentNotFoundError(assessment_id)
        return assessment

    async def list_assessments(
        self,
        subject: Optional[str] = None,
        status: Optional[Union[AssessmentStatus, str]] = None,
        created_by: Optional[str] = None
    ) -> List[Assessment]:
        """List assessments, optionally filtered."""
        filter: Dict[str, Any] = {}
        if subject:
            filter["subject"] = subject
        if status:
            filter["status"] = _coerce_enum(AssessmentStatus, status, "assessment status").value
        if created_by:
            filter["created_by"] = created_by
        try:
            assessments = await self.store.query(Assessment.ENTITY_KIND, filter)
        except EngineError:
            raise
        except Exception as e:
            raise StoreError("Failed to list assessments", cause=e)
        return sorted(assessments, key=lambda a: a.created_at)

    async def update_assessment(self, assessment_id: str, changes: Dict[str, Any]) -> Assessment:
        """
        Edit a draft assessment.

        Raises:
            InvalidStateError: If the assessment is no longer a draft
            ValidationError: If a change is not editable or malformed
        """
        unknown = set(changes) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        async with self._locks.hold(assessment_id):
            assessment = await self.get_assessment(assessment_id)
            self._require_status(assessment, AssessmentStatus.DRAFT, "edited")

            updated = copy.deepcopy(assessment)
            if "title" in changes:
                if not changes["title"]:
                    raise ValidationError("Assessment title cannot be empty")
                updated.title = changes["title"]
            if "description" in changes:
                updated.description = changes["description"] or ""
            if "difficulty" in changes:
                updated.difficulty = _coerce_enum(DifficultyTier, changes["difficulty"], "difficulty")
            if "type" in changes:
                updated.type = _coerce_enum(AssessmentType, changes["type"], "assessment type")
            if "settings" in changes:
                updated.settings = updated.settings.merged(changes["settings"])
            if "questions" in changes:
                updated.questions = self._build_questions(changes["questions"] or [])
            updated.touch()

            await self._save(updated)

        logger.info(f"Updated assessment {assessment_id}: {', '.join(sorted(changes))}")
        return updated

    async def add_questions(self, assessment_id: str, questions: List[Any]) -> Assessment:
        """
        Append questions to a draft or published assessment.

        Sessions that already started keep their own snapshot.

        Raises:
            InvalidStateError: If the assessment is archived
        """
        new_questions = self._build_questions(questions)
        if not new_questions:
            raise ValidationError("No questions given")

        async with self._locks.hold(assessment_id):
            assessment = await self.get_assessment(assessment_id)
            if assessment.status == AssessmentStatus.ARCHIVED:
                raise InvalidStateError(
                    f"Assessment {assessment_id} is archived", details={"assessment_id": assessment_id}
                )
            known = {question.id for question in assessment.questions}
            duplicates = [question.id for question in new_questions if question.id in known]
            if duplicates:
                raise ValidationError(
                    "Question IDs already exist in the assessment", details={"question_ids": duplicates}
                )
            assessment.questions.extend(new_questions)
            assessment.touch()
            await self._save(assessment)

        logger.info(f"Added {len(new_questions)} question(s) to assessment {assessment_id}")
        return assessment

    async def publish_assessment(self, assessment_id: str) -> Assessment:
        """
        Publish a draft assessment.

        Raises:
            InvalidStateError: If the assessment is not a draft
            ValidationError: If the assessment has no questions
        """
        async with self._locks.hold(assessment_id):
            assessment = await self.get_assessment(assessment_id)
            self._require_status(assessment, AssessmentStatus.DRAFT, "published")
            if not assessment.questions:
                raise ValidationError(
                    f"Assessment {assessment_id} has no questions", details={"assessment_id": assessment_id}
                )
            assessment.status = AssessmentStatus.PUBLISHED
            assessment.touch()
            await self._save(assessment)

        logger.info(f"Published assessment {assessment_id}")
        return assessment

    async def archive_assessment(self, assessment_id: str) -> Assessment:
        """
        Archive an assessment; no new sessions can start afterwards.

        Raises:
            InvalidStateError: If the assessment is already archived
        """
        async with self._locks.hold(assessment_id):
            assessment = await self.get_assessment(assessment_id)
            if assessment.status == AssessmentStatus.ARCHIVED:
                raise InvalidStateError(
                    f"Assessment {assessment_id} is already archived", details={"assessment_id": assessment_id}
                )
            assessment.status = AssessmentStatus.ARCHIVED
            assessment.touch()
            await self._save(assessment)

        logger.info(f"Archived assessment {assessment_id}")
        return assessment

    async def store_analytics(self, assessment_id: str, analytics: AssessmentAnalyticsCache) -> Assessment:
        """
        Replace the analytics cache of the stored assessment.

        The assessment is re-read under its lock so that concurrent lifecycle
        changes and question additions are kept.

        Raises:
            AssessmentNotFoundError: If the assessment does not exist
        """
        async with self._locks.hold(assessment_id):
            assessment = await self.get_assessment(assessment_id)
            assessment.analytics = copy.deepcopy(analytics)
            await self._save(assessment)
        return assessment

    @staticmethod
    def _build_questions(items: List[Any]) -> List[Question]:
        """Build and validate authored questions; points and time always follow the tier."""
        questions = []
        for item in items:
            if isinstance(item, Question):
                question = copy.deepcopy(item)
            elif isinstance(item, dict):
                try:
                    question = Question.from_dict(_with_derived_fields(item))
                except (KeyError, TypeError, ValueError) as e:
                    raise ValidationError(f"Malformed question: {e}", cause=e)
            else:
                raise ValidationError(f"Question must be a mapping, got {type(item).__name__}")
            question.validate()
            if question.points != points_for(question.difficulty):
                raise ValidationError(
                    f"Question points must be {points_for(question.difficulty)} for tier {question.difficulty.value}",
                    details={"question_id": question.id}
                )
            questions.append(question)

        ids = [question.id for question in questions]
        if len(ids) != len(set(ids)):
            raise ValidationError("Question IDs must be unique")
        return questions

    @staticmethod
    def _require_status(assessment: Assessment, status: AssessmentStatus, action: str) -> None:
        if assessment.status != status:
            raise InvalidStateError(
                f"Assessment {assessment.id} is {assessment.status.value} and cannot be {action}",
                details={"assessment_id": assessment.id, "status": assessment.status.value}
            )

    async def _save(self, assessment: Assessment) -> None:
        try:
            await self.store.save(assessment)
        except EngineError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to save assessment {assessment.id}", cause=e)

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

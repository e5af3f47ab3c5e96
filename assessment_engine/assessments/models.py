"""
Assessment Models

This module defines the core data models of the engine: assessments and
their questions, student sessions with their responses, feedback and
difficulty adjustments, and the analytics attached to both.
"""

import uuid
import enum
import datetime
from typing import Dict, List, Any, Optional, Set
from dataclasses import dataclass, field

from assessment_engine.common.error_handling import InvariantViolationError, ValidationError
from assessment_engine.common.serialization import SerializableMixin, parse_datetime


def utcnow() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class DifficultyTier(enum.Enum):
    """Ordered difficulty tiers."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        """Position of the tier, 0 for beginner."""
        return _TIER_ORDER.index(self)

    def raised(self) -> 'DifficultyTier':
        """One tier harder, capped at expert."""
        return _TIER_ORDER[min(self.rank + 1, len(_TIER_ORDER) - 1)]

    def lowered(self) -> 'DifficultyTier':
        """One tier easier, floored at beginner."""
        return _TIER_ORDER[max(self.rank - 1, 0)]


_TIER_ORDER = [
    DifficultyTier.BEGINNER,
    DifficultyTier.INTERMEDIATE,
    DifficultyTier.ADVANCED,
    DifficultyTier.EXPERT,
]


class QuestionType(enum.Enum):
    """Kinds of question the engine can evaluate."""
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"

    @property
    def is_choice(self) -> bool:
        return self in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)


class AssessmentType(enum.Enum):
    """Whether an assessment adapts difficulty during a session."""
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


class AssessmentStatus(enum.Enum):
    """Lifecycle status of an assessment."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SessionStatus(enum.Enum):
    """Status of a student session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class FeedbackType(enum.Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"


class AdjustmentDirection(enum.Enum):
    """Outcome of a difficulty decision."""
    RAISE = "raise"
    LOWER = "lower"
    MAINTAIN = "maintain"


def _coerce_enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}", details={label: value})


@dataclass
class AnswerOption(SerializableMixin):
    """One selectable option of a choice question."""

    __serializable_fields__ = ["id", "text", "value"]
    __optional_fields__ = ["value"]

    id: str
    text: str
    value: Any = None


@dataclass
class Question(SerializableMixin):
    """
    A single assessment question.

    ``correct_answer`` holds the correct option ID for choice questions, the
    expected text for short answers, and a list of accepted strings for
    fill-in-the-blank questions. Essays are judged on ``min_words``.
    """

    __serializable_fields__ = [
        "id", "type", "content", "options", "correct_answer", "difficulty",
        "points", "estimated_time_ms", "explanation", "hints", "feedback",
        "min_words", "subject", "topic", "template_id"
    ]

    type: QuestionType
    content: str
    difficulty: DifficultyTier
    points: int
    estimated_time_ms: int
    correct_answer: Any = None
    options: List[AnswerOption] = field(default_factory=list)
    explanation: str = ""
    hints: List[str] = field(default_factory=list)
    feedback: Dict[str, str] = field(default_factory=dict)
    min_words: Optional[int] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    template_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        """Coerce serialized values back into their types."""
        self.type = _coerce_enum(QuestionType, self.type, "question type")
        self.difficulty = _coerce_enum(DifficultyTier, self.difficulty, "difficulty")
        self.options = [
            option if isinstance(option, AnswerOption) else AnswerOption.from_dict(option)
            for option in self.options or []
        ]

    @property
    def option_ids(self) -> List[str]:
        return [option.id for option in self.options]

    def validate(self) -> None:
        """
        Check that the question carries a usable answer key.

        Raises:
            ValidationError: If content or the answer key is missing or inconsistent
        """
        details = {"question_id": self.id}
        if not self.content or not self.content.strip():
            raise ValidationError("Question content is required", details=details)
        if self.points < 0 or self.estimated_time_ms < 0:
            raise ValidationError("Question points and time must not be negative", details=details)

        if self.type.is_choice:
            if len(self.options) < 2:
                raise ValidationError("Choice questions need at least two options", details=details)
            if len(set(self.option_ids)) != len(self.options):
                raise ValidationError("Option IDs must be unique", details=details)
            if self.correct_answer not in self.option_ids:
                raise ValidationError("Correct answer must be one of the option IDs", details=details)
        elif self.type == QuestionType.FILL_BLANK:
            if not isinstance(self.correct_answer, list) or not self.correct_answer:
                raise ValidationError("Fill-in-the-blank questions need a list of accepted answers", details=details)
        elif self.type == QuestionType.SHORT_ANSWER:
            if not isinstance(self.correct_answer, str) or not self.correct_answer.strip():
                raise ValidationError("Short-answer questions need an expected answer", details=details)
        elif self.type == QuestionType.ESSAY:
            if self.min_words is not None and self.min_words < 0:
                raise ValidationError("Minimum word count must not be negative", details=details)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        return cls(**{name: data[name] for name in cls.__serializable_fields__ if name in data})


@dataclass
class AssessmentSettings(SerializableMixin):
    """Settings of an assessment; sessions carry a copy merged with start options."""

    __serializable_fields__ = [
        "time_limit_ms", "randomize_questions", "allow_retakes",
        "show_feedback", "adaptive_enabled"
    ]
    __optional_fields__ = __serializable_fields__

    time_limit_ms: int = 3_600_000
    randomize_questions: bool = True
    allow_retakes: bool = False
    show_feedback: bool = True
    adaptive_enabled: bool = True

    def merged(self, options: Optional[Dict[str, Any]] = None) -> 'AssessmentSettings':
        """
        Create a copy with the given options applied on top.

        Args:
            options: Setting overrides

        Returns:
            New settings instance

        Raises:
            ValidationError: If an option is unknown or has the wrong type
        """
        values = self.to_dict()
        for key, value in (options or {}).items():
            if key not in values:
                raise ValidationError(f"Unknown setting: {key}", details={"setting": key})
            expected = type(values[key])
            if expected is int:
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise ValidationError(f"Setting {key} must be a positive integer", details={"setting": key})
            elif not isinstance(value, expected):
                raise ValidationError(f"Setting {key} must be a {expected.__name__}", details={"setting": key})
            values[key] = value
        return AssessmentSettings(**values)


@dataclass
class AssessmentAnalyticsCache(SerializableMixin):
    """Aggregates cached on an assessment when a report is generated."""

    __serializable_fields__ = [
        "total_attempts", "completed_attempts", "average_score",
        "completion_rate", "average_time_ms", "updated_at"
    ]
    __optional_fields__ = __serializable_fields__

    total_attempts: int = 0
    completed_attempts: int = 0
    average_score: float = 0
    completion_rate: float = 0
    average_time_ms: float = 0
    updated_at: Optional[datetime.datetime] = None

    def __post_init__(self):
        self.updated_at = parse_datetime(self.updated_at)


@dataclass
class Assessment(SerializableMixin):
    """
    An assessment definition.

    Questions are editable only while the assessment is a draft; once
    published, questions may only be appended.
    """

    ENTITY_KIND = "assessment"

    __serializable_fields__ = [
        "id", "title", "description", "subject", "difficulty", "type", "questions",
        "settings", "analytics", "status", "created_by", "created_at", "updated_at"
    ]

    title: str
    subject: str
    difficulty: DifficultyTier = DifficultyTier.INTERMEDIATE
    type: AssessmentType = AssessmentType.ADAPTIVE
    questions: List[Question] = field(default_factory=list)
    settings: AssessmentSettings = field(default_factory=AssessmentSettings)
    analytics: AssessmentAnalyticsCache = field(default_factory=AssessmentAnalyticsCache)
    status: AssessmentStatus = AssessmentStatus.DRAFT
    created_by: Optional[str] = None
    description: str = ""
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        self.difficulty = _coerce_enum(DifficultyTier, self.difficulty, "difficulty")
        self.type = _coerce_enum(AssessmentType, self.type, "assessment type")
        self.status = _coerce_enum(AssessmentStatus, self.status, "assessment status")
        self.created_at = parse_datetime(self.created_at)
        self.updated_at = parse_datetime(self.updated_at)

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    def touch(self) -> None:
        self.updated_at = utcnow()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Assessment':
        values = {name: data[name] for name in cls.__serializable_fields__ if name in data}
        values["questions"] = [Question.from_dict(q) for q in data.get("questions", [])]
        values["settings"] = AssessmentSettings.from_dict(data.get("settings") or {})
        values["analytics"] = AssessmentAnalyticsCache.from_dict(data.get("analytics") or {})
        return cls(**values)


@dataclass
class Feedback(SerializableMixin):
    """Feedback shown to a student after an answer."""

    __serializable_fields__ = ["type", "message", "hints", "explanation", "encouragement", "timestamp"]

    type: FeedbackType
    message: str
    hints: List[str] = field(default_factory=list)
    explanation: Optional[str] = None
    encouragement: str = ""
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.type = _coerce_enum(FeedbackType, self.type, "feedback type")
        self.timestamp = parse_datetime(self.timestamp)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Feedback':
        return cls(**{name: data[name] for name in cls.__serializable_fields__ if name in data})


@dataclass
class Response(SerializableMixin):
    """
    A recorded answer.

    ``difficulty`` and ``points`` are those of the question when it was
    answered; later adjustments never touch answered questions.
    """

    __serializable_fields__ = [
        "question_id", "answer", "is_correct", "score", "time_spent_ms",
        "feedback", "timestamp", "difficulty", "points"
    ]

    question_id: str
    answer: Any
    is_correct: bool
    score: int
    time_spent_ms: int
    difficulty: DifficultyTier
    points: int
    feedback: Optional[Feedback] = None
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.difficulty = _coerce_enum(DifficultyTier, self.difficulty, "difficulty")
        self.timestamp = parse_datetime(self.timestamp)
        if isinstance(self.feedback, dict):
            self.feedback = Feedback.from_dict(self.feedback)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Response':
        return cls(**{name: data[name] for name in cls.__serializable_fields__ if name in data})


@dataclass
class DifficultyAdjustment(SerializableMixin):
    """A difficulty change applied to a session's unanswered questions."""

    __serializable_fields__ = [
        "direction", "accuracy", "window", "after_responses",
        "question_ids", "timestamp"
    ]

    direction: AdjustmentDirection
    accuracy: float
    window: int
    after_responses: int
    question_ids: List[str] = field(default_factory=list)
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.direction = _coerce_enum(AdjustmentDirection, self.direction, "adjustment direction")
        self.timestamp = parse_datetime(self.timestamp)


@dataclass
class IntegrityFlag(SerializableMixin):
    """A suspicious-activity marker; flags never change a score."""

    __serializable_fields__ = ["kind", "detail", "source", "metadata", "timestamp"]
    __optional_fields__ = ["detail", "source", "metadata", "timestamp"]

    kind: str
    detail: str = ""
    source: str = "engine"
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.timestamp = parse_datetime(self.timestamp)


@dataclass
class SessionAnalytics(SerializableMixin):
    """Per-session performance summary computed when a session ends."""

    __serializable_fields__ = [
        "total_questions", "answered_questions", "correct_answers", "accuracy",
        "score", "max_score", "time_spent_ms", "average_time_per_question_ms",
        "difficulty_distribution", "performance_trend", "adjustments",
        "integrity_flags"
    ]
    __optional_fields__ = __serializable_fields__

    total_questions: int = 0
    answered_questions: int = 0
    correct_answers: int = 0
    accuracy: float = 0
    score: int = 0
    max_score: int = 0
    time_spent_ms: int = 0
    average_time_per_question_ms: float = 0
    difficulty_distribution: Dict[str, int] = field(default_factory=dict)
    performance_trend: List[float] = field(default_factory=list)
    adjustments: int = 0
    integrity_flags: int = 0

    @property
    def score_percent(self) -> float:
        if self.max_score == 0:
            return 0
        return self.score / self.max_score * 100


@dataclass
class Session(SerializableMixin):
    """
    A student's attempt at an assessment.

    ``questions`` is a deep copy of the assessment's questions taken at start;
    edits to the assessment never reach it. ``version`` increases with every
    mutation and orders persistence of snapshots.
    """

    ENTITY_KIND = "session"

    __serializable_fields__ = [
        "id", "assessment_id", "student_id", "start_time", "end_time", "status",
        "questions", "responses", "score", "settings", "analytics",
        "adjustments", "integrity_flags", "version"
    ]

    assessment_id: str
    student_id: str
    questions: List[Question]
    settings: AssessmentSettings
    start_time: datetime.datetime = field(default_factory=utcnow)
    end_time: Optional[datetime.datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    responses: List[Response] = field(default_factory=list)
    score: int = 0
    analytics: Optional[SessionAnalytics] = None
    adjustments: List[DifficultyAdjustment] = field(default_factory=list)
    integrity_flags: List[IntegrityFlag] = field(default_factory=list)
    version: int = 0
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        self.status = _coerce_enum(SessionStatus, self.status, "session status")
        self.start_time = parse_datetime(self.start_time)
        self.end_time = parse_datetime(self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def answered_ids(self) -> Set[str]:
        return {response.question_id for response in self.responses}

    @property
    def max_score(self) -> int:
        return sum(question.points for question in self.questions)

    def get_question(self, question_id: str) -> Optional[Question]:
        """
        Get a question of the snapshot by ID.

        Args:
            question_id: Question ID

        Returns:
            The question, or None if it is not part of this session
        """
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def unanswered_questions(self) -> List[Question]:
        answered = self.answered_ids
        return [question for question in self.questions if question.id not in answered]

    def elapsed_ms(self, now: Optional[datetime.datetime] = None) -> int:
        """Milliseconds between start and end (or ``now`` while active)."""
        end = self.end_time or now or utcnow()
        return max(0, int((end - self.start_time).total_seconds() * 1000))

    def check_invariants(self) -> None:
        """
        Verify the session's internal consistency.

        Raises:
            InvariantViolationError: If any invariant does not hold
        """
        from assessment_engine.assessments.templates import points_for

        details = {"session_id": self.id}
        total = sum(response.score for response in self.responses)
        if total != self.score:
            raise InvariantViolationError(
                f"Session score {self.score} does not match response total {total}", details=details
            )
        if self.score > self.max_score:
            raise InvariantViolationError(
                f"Session score {self.score} exceeds maximum {self.max_score}", details=details
            )

        snapshot_ids = [question.id for question in self.questions]
        if len(set(snapshot_ids)) != len(snapshot_ids):
            raise InvariantViolationError("Session snapshot contains duplicate question IDs", details=details)

        seen = set()
        for response in self.responses:
            if response.question_id not in snapshot_ids:
                raise InvariantViolationError(
                    f"Response for unknown question {response.question_id}", details=details
                )
            if response.question_id in seen:
                raise InvariantViolationError(
                    f"Question {response.question_id} answered more than once", details=details
                )
            seen.add(response.question_id)
            if response.points != points_for(response.difficulty):
                raise InvariantViolationError(
                    f"Response points disagree with tier for question {response.question_id}", details=details
                )

        for question in self.questions:
            if question.points != points_for(question.difficulty):
                raise InvariantViolationError(
                    f"Question {question.id} points disagree with its tier", details=details
                )

        if self.status == SessionStatus.ACTIVE and self.end_time is not None:
            raise InvariantViolationError("Active session has an end time", details=details)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        values = {name: data[name] for name in cls.__serializable_fields__ if name in data}
        values["questions"] = [Question.from_dict(q) for q in data.get("questions", [])]
        values["settings"] = AssessmentSettings.from_dict(data.get("settings") or {})
        values["responses"] = [Response.from_dict(r) for r in data.get("responses", [])]
        values["adjustments"] = [DifficultyAdjustment.from_dict(a) for a in data.get("adjustments", [])]
        values["integrity_flags"] = [IntegrityFlag.from_dict(f) for f in data.get("integrity_flags", [])]
        if data.get("analytics") is not None:
            values["analytics"] = SessionAnalytics.from_dict(data["analytics"])
        return cls(**values)


ENTITY_TYPES = {
    Assessment.ENTITY_KIND: Assessment,
    Session.ENTITY_KIND: Session,
}

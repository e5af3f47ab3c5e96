"""
Assessment API Controller

This module exposes the engine over HTTP:
1. Assessment creation, listing, lifecycle transitions and reports
2. Question generation previews
3. Session start, answer submission, completion and integrity events

Engine errors propagate to the application's exception handlers, which map
them to status codes.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from assessment_engine.api import APIResponse
from assessment_engine.common.logger import app_logger
from assessment_engine.assessments.engine import AssessmentEngine
from assessment_engine.assessments.models import AssessmentType, DifficultyTier, QuestionType

# Set up logger
logger = app_logger.getChild("controller")

# Create router
router = APIRouter()


# Request Models
class CreateAssessmentRequest(BaseModel):
    subject: str = Field(..., min_length=1, description="Subject the assessment covers")
    title: Optional[str] = None
    description: Optional[str] = None
    difficulty: DifficultyTier = DifficultyTier.INTERMEDIATE
    type: AssessmentType = AssessmentType.ADAPTIVE
    settings: Dict[str, Any] = Field(default_factory=dict)
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    auto_generate: bool = False
    question_count: Optional[int] = Field(None, gt=0, le=100, description="Questions to generate")
    question_types: Optional[List[QuestionType]] = None
    created_by: Optional[str] = None


class UpdateAssessmentRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    difficulty: Optional[DifficultyTier] = None
    type: Optional[AssessmentType] = None
    settings: Optional[Dict[str, Any]] = None
    questions: Optional[List[Dict[str, Any]]] = None


class AddQuestionsRequest(BaseModel):
    questions: List[Dict[str, Any]] = Field(..., min_length=1)


class GenerateQuestionsRequest(BaseModel):
    subject: str
    difficulty: DifficultyTier = DifficultyTier.INTERMEDIATE
    count: int = Field(5, gt=0, le=100)
    question_types: Optional[List[QuestionType]] = None


class StartSessionRequest(BaseModel):
    student_id: str = Field(..., min_length=1, description="Opaque student identifier")
    options: Dict[str, Any] = Field(default_factory=dict, description="Setting overrides for this session")


class SubmitAnswerRequest(BaseModel):
    question_id: str = Field(..., description="Question identifier")
    answer: Any = Field(..., description="Option ID, true/false, text or essay")
    time_spent_ms: float = Field(0, ge=0, description="Time taken to answer in milliseconds")


class AbandonSessionRequest(BaseModel):
    reason: str = "abandoned"


class IntegrityEventRequest(BaseModel):
    kind: str = Field(..., min_length=1, description="Event kind, e.g. tab_switch or copy_paste")
    detail: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


def get_engine(request: Request) -> AssessmentEngine:
    """Engine created by the application lifespan."""
    return request.app.state.engine


#--------------------------------------------------------------------------
# Assessments
#--------------------------------------------------------------------------

@router.post("/", status_code=201)
async def create_assessment(body: CreateAssessmentRequest, engine: AssessmentEngine = Depends(get_engine)):
    spec = body.model_dump(exclude_none=True)
    assessment = await engine.create_assessment(spec)
    return APIResponse.success(assessment.to_dict(), "Assessment created")


@router.get("/")
async def list_assessments(
    subject: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    engine: AssessmentEngine = Depends(get_engine)
):
    assessments = await engine.list_assessments(subject, status, created_by)
    return APIResponse.success([assessment.to_dict() for assessment in assessments])


@router.post("/generate")
async def generate_questions(body: GenerateQuestionsRequest, engine: AssessmentEngine = Depends(get_engine)):
    """Preview generated questions without creating an assessment."""
    questions = engine.generate_questions(body.subject, body.difficulty, body.count, body.question_types)
    return APIResponse.success([question.to_dict() for question in questions])


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    return APIResponse.success(session.to_dict())


@router.post("/sessions/{session_id}/answers")
async def submit_answer(
    session_id: str,
    body: SubmitAnswerRequest,
    engine: AssessmentEngine = Depends(get_engine)
):
    result = await engine.submit_answer(session_id, body.question_id, body.answer, body.time_spent_ms)
    return APIResponse.success(result.to_dict(), "Answer recorded")


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str, engine: AssessmentEngine = Depends(get_engine)):
    completion = await engine.end_session(session_id)
    return APIResponse.success(completion.to_dict(), "Session completed")


@router.post("/sessions/{session_id}/abandon")
async def abandon_session(
    session_id: str,
    body: Optional[AbandonSessionRequest] = None,
    engine: AssessmentEngine = Depends(get_engine)
):
    reason = body.reason if body else "abandoned"
    completion = await engine.abandon_session(session_id, reason)
    return APIResponse.success(completion.to_dict(), "Session abandoned")


@router.post("/sessions/{session_id}/integrity", status_code=201)
async def record_integrity_event(
    session_id: str,
    body: IntegrityEventRequest,
    engine: AssessmentEngine = Depends(get_engine)
):
    flag = await engine.record_integrity_event(session_id, body.kind, body.detail, body.metadata)
    return APIResponse.success(flag.to_dict(), "Integrity event recorded")


@router.get("/{assessment_id}")
async def get_assessment(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
    assessment = await engine.get_assessment(assessment_id)
    return APIResponse.success(assessment.to_dict())


@router.post("/{assessment_id}/publish")
async def publish_assessment(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
    assessment = await engine.publish_assessment(assessment_id)
    return APIResponse.success(assessment.to_dict(), "Assessment published")


@router.post("/{assessment_id}/archive")
async def archive_assessment(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
    assessment = await engine.archive_assessment(assessment_id)
    return APIResponse.success(assessment.to_dict(), "Assessment archived")


@router.post("/{assessment_id}/questions")
async def add_questions(
    assessment_id: str,
    body: AddQuestionsRequest,
    engine: AssessmentEngine = Depends(get_engine)
):
    assessment = await engine.add_questions(assessment_id, body.questions)
    return APIResponse.success(assessment.to_dict(), f"Added {len(body.questions)} question(s)")


@router.get("/{assessment_id}/report")
async def get_report(assessment_id: str, engine: AssessmentEngine = Depends(get_engine)):
    report = await engine.generate_assessment_report(assessment_id)
    return APIResponse.success(report.to_dict())


@router.post("/{assessment_id}/sessions", status_code=201)
async def start_session(
    assessment_id: str,
    body: StartSessionRequest,
    engine: AssessmentEngine = Depends(get_engine)
):
    session = await engine.start_session(assessment_id, body.student_id, body.options)
    logger.debug(f"Session {session.id} started over HTTP")
    return APIResponse.success(session.to_dict(), "Session started")


@router.patch("/{assessment_id}")
async def update_assessment(
    assessment_id: str,
    body: UpdateAssessmentRequest,
    engine: AssessmentEngine = Depends(get_engine)
):
    """Edit a draft assessment; only the fields present in the body change."""
    assessment = await engine.update_assessment(assessment_id, body.model_dump(exclude_unset=True))
    return APIResponse.success(assessment.to_dict(), "Assessment updated")

"""
Assessment Session API

JSON routes over the session service. Responses are presentation state;
engine errors are turned into ErrorInfo bodies by the handlers registered
in ``examcore.common.error_handling``.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from examcore.common.logger import app_logger
from examcore.assessments.session.presentation import SessionView
from examcore.assessments.session.service import SessionService
from examcore.api.dependencies import get_interaction_id, get_role, get_service, get_student_id

logger = app_logger.getChild("api")

router = APIRouter()


class ActionRequest(BaseModel):
    """A posted exam form: field name to value (or list of values)."""
    form: Dict[str, Any] = Field(default_factory=dict)


class CodeResponse(BaseModel):
    interaction_id: str
    code: str


class CodeResolution(BaseModel):
    interaction_id: str
    sessions: List[SessionView]


class StudentInteraction(BaseModel):
    student_id: str
    interaction_id: str


@router.get("/assessments/{assessment_id}", response_model=SessionView, tags=["sessions"])
def open_session(
    assessment_id: str,
    redirect: Optional[str] = Query(None),
    interaction_id: str = Depends(get_interaction_id),
    student_id: str = Depends(get_student_id),
    service: SessionService = Depends(get_service),
):
    """Start the assessment, or resume it if this interaction already has it open."""
    return service.open(interaction_id, assessment_id, student_id, redirect)


@router.post("/assessments/{assessment_id}/actions", response_model=SessionView, tags=["sessions"])
def post_action(
    assessment_id: str,
    request: ActionRequest,
    interaction_id: str = Depends(get_interaction_id),
    service: SessionService = Depends(get_service),
):
    return service.handle(interaction_id, assessment_id, request.form)


@router.post("/assessments/{assessment_id}/code", response_model=CodeResponse, tags=["proctoring"])
def issue_code(
    assessment_id: str,
    interaction_id: str = Depends(get_interaction_id),
    service: SessionService = Depends(get_service),
):
    """Issue (or repeat) the proctoring code for the caller's interaction."""
    return CodeResponse(interaction_id=interaction_id, code=service.issue_code(interaction_id))


@router.get("/codes/{code}", response_model=CodeResolution, tags=["proctoring"])
def resolve_code(code: str, service: SessionService = Depends(get_service)):
    interaction_id, sessions = service.resolve_code(code)
    return CodeResolution(interaction_id=interaction_id, sessions=sessions)


@router.get("/students/{student_id}/interaction", response_model=StudentInteraction, tags=["proctoring"])
def student_interaction(student_id: str, service: SessionService = Depends(get_service)):
    return StudentInteraction(student_id=student_id, interaction_id=service.interaction_for_student(student_id))


@router.get("/admin/sessions", response_model=List[SessionView], tags=["admin"])
def list_sessions(role: Optional[str] = Depends(get_role), service: SessionService = Depends(get_service)):
    return service.list_sessions(role)


@router.post("/admin/sessions/{interaction_id}/{assessment_id}/force-abort",
             response_model=SessionView, tags=["admin"])
def force_abort(
    interaction_id: str,
    assessment_id: str,
    role: Optional[str] = Depends(get_role),
    service: SessionService = Depends(get_service),
):
    logger.info(f"Force abort of {interaction_id}/{assessment_id} requested")
    return service.force_abort(interaction_id, assessment_id, role)


@router.post("/admin/sessions/{interaction_id}/{assessment_id}/force-submit",
             response_model=SessionView, tags=["admin"])
def force_submit(
    interaction_id: str,
    assessment_id: str,
    role: Optional[str] = Depends(get_role),
    service: SessionService = Depends(get_service),
):
    logger.info(f"Force submit of {interaction_id}/{assessment_id} requested")
    return service.force_submit(interaction_id, assessment_id, role)

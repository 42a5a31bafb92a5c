"""
API Dependencies

Caller identity and role arrive in headers set by the fronting request
handler; the session service lives on the application state.
"""

from typing import Optional

from fastapi import Header, Request

from examcore.assessments.session.service import SessionService


def get_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_interaction_id(x_interaction_id: str = Header(..., alias="X-Interaction-Id")) -> str:
    return x_interaction_id


def get_student_id(x_student_id: str = Header(..., alias="X-Student-Id")) -> str:
    return x_student_id


def get_role(x_role: Optional[str] = Header(None, alias="X-Role")) -> Optional[str]:
    return x_role

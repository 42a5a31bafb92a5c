"""
Error Handling for the exam engine

This module provides:
1. Standard error codes and severities
2. Structured error information for API responses and logs
3. FastAPI exception handlers mapping engine errors to HTTP responses
"""

import logging
import traceback
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from examcore.common.logger import app_logger

logger = app_logger.getChild("errors")


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes"""
    # General errors
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    AUTHORIZATION_ERROR = "authorization_error"

    # Assessment errors
    DOCUMENT_ERROR = "document_error"
    FORMULA_ERROR = "formula_error"
    INELIGIBLE = "ineligible"
    ALREADY_SUBMITTED = "already_submitted"
    SESSION_NOT_FOUND = "session_not_found"

    # Storage errors
    STORAGE_ERROR = "storage_error"
    PERSISTENCE_ERROR = "persistence_error"


# HTTP status returned for each error code
STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.UNKNOWN_ERROR: 500,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.AUTHORIZATION_ERROR: 403,
    ErrorCode.DOCUMENT_ERROR: 404,
    ErrorCode.FORMULA_ERROR: 500,
    ErrorCode.INELIGIBLE: 403,
    ErrorCode.ALREADY_SUBMITTED: 409,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.STORAGE_ERROR: 503,
    ErrorCode.PERSISTENCE_ERROR: 500,
}


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


def error_info_from_exception(exc: Exception, include_stack_trace: bool = False) -> ErrorInfo:
    """
    Build an ErrorInfo for any exception.

    Engine errors contribute their own code and severity; anything else is
    reported as an unknown error.
    """
    code = getattr(exc, "code", ErrorCode.UNKNOWN_ERROR)
    severity = getattr(exc, "severity", ErrorSeverity.ERROR)
    details: Dict[str, Any] = {}

    reasons = getattr(exc, "reasons", None)
    if reasons:
        details["reasons"] = list(reasons)
    original = getattr(exc, "original_exception", None)
    if original is not None:
        details["cause"] = {"type": type(original).__name__, "message": str(original)}

    return ErrorInfo(
        code=code,
        message=getattr(exc, "message", str(exc)),
        severity=severity,
        details=details or None,
        exception_type=type(exc).__name__,
        stack_trace=traceback.format_exc() if include_stack_trace else None,
    )


def register_exception_handlers(app) -> None:
    """
    Install handlers that turn engine errors into JSON error responses.

    Args:
        app: FastAPI application
    """
    from fastapi import Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.responses import JSONResponse
    from examcore.common.exceptions import ExamCoreError

    @app.exception_handler(ExamCoreError)
    async def handle_engine_error(request: Request, exc: ExamCoreError) -> JSONResponse:
        info = error_info_from_exception(exc)
        status = STATUS_CODES.get(exc.code, 500)
        level = logging.ERROR if status >= 500 else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} -> {status}: {exc.message}")
        return JSONResponse(status_code=status, content=info.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {
                "location": list(error.get("loc", [])),
                "message": error.get("msg", "Unknown validation error"),
                "type": error.get("type", ""),
            }
            for error in exc.errors()
        ]
        info = ErrorInfo(
            code=ErrorCode.VALIDATION_ERROR,
            message="Validation error",
            severity=ErrorSeverity.WARNING,
            details={"errors": details},
        )
        return JSONResponse(status_code=STATUS_CODES[ErrorCode.VALIDATION_ERROR], content=info.model_dump(mode="json"))

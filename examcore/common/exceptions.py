"""
Common Exception Classes

This module defines the exceptions used throughout the exam engine. Every
error carries an ErrorCode so the API layer can map it to a response without
inspecting message text.
"""

from typing import Any, List, Optional

from examcore.common.error_handling import ErrorCode, ErrorSeverity


class ExamCoreError(Exception):
    """Base class for all custom exceptions."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class DocumentError(ExamCoreError):
    """Raised when an assessment document is structurally invalid or cannot be loaded."""

    code = ErrorCode.DOCUMENT_ERROR


class FormulaError(ExamCoreError):
    """Raised when a grading or outcome formula cannot be parsed or evaluated."""

    code = ErrorCode.FORMULA_ERROR

    def __init__(self, message: str, source: Optional[str] = None):
        """
        Initialize the formula error.

        Args:
            message: Error message
            source: Source text of the formula that failed
        """
        super().__init__(message)
        self.source = source


class IneligibleError(ExamCoreError):
    """Raised when a student may not start the requested assessment."""

    code = ErrorCode.INELIGIBLE
    severity = ErrorSeverity.INFO

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = list(reasons or [])


class AlreadySubmittedError(ExamCoreError):
    """Raised when a completion with the same serial and start time was already recorded."""

    code = ErrorCode.ALREADY_SUBMITTED
    severity = ErrorSeverity.WARNING

    def __init__(self, serial_number: int):
        super().__init__("This assessment has already been submitted.")
        self.serial_number = serial_number


class StorageError(ExamCoreError):
    """Raised when a result, outcome, or recovery record cannot be stored."""

    code = ErrorCode.STORAGE_ERROR

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(f"Storage error: {message}", original_exception)


class PersistenceError(ExamCoreError):
    """Raised when a persisted session record cannot be restored."""

    code = ErrorCode.PERSISTENCE_ERROR


class AuthorizationError(ExamCoreError):
    """Raised when a privileged control is requested without the required role."""

    code = ErrorCode.AUTHORIZATION_ERROR
    severity = ErrorSeverity.WARNING

    def __init__(self, message: str, action: Optional[str] = None):
        super().__init__(f"Authorization error: {message}")
        self.action = action


class SessionNotFoundError(ExamCoreError):
    """Raised when no live session matches the requested identity."""

    code = ErrorCode.SESSION_NOT_FOUND
    severity = ErrorSeverity.INFO

    def __init__(self, interaction_id: Any, assessment_id: Any = None):
        if assessment_id is None:
            super().__init__(f"No live session for {interaction_id}")
        else:
            super().__init__(f"No session for interaction {interaction_id} and assessment {assessment_id}")
        self.interaction_id = interaction_id
        self.assessment_id = assessment_id

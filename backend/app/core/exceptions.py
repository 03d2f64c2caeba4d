"""Custom exceptions for the application."""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    # Auth
    UNAUTHORIZED = "UNAUTHORIZED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    USER_INACTIVE = "USER_INACTIVE"

    # Resource
    LEAD_NOT_FOUND = "LEAD_NOT_FOUND"
    ASSESSMENT_NOT_FOUND = "ASSESSMENT_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    QUESTION_NOT_FOUND = "QUESTION_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    DUPLICATE_CIN = "DUPLICATE_CIN"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"

    # Concurrency
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    STALE_DATA = "STALE_DATA"

    # Business rules
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    ASSESSOR_NOT_ASSIGNED = "ASSESSOR_NOT_ASSIGNED"
    ASSESSMENT_ALREADY_SUBMITTED = "ASSESSMENT_ALREADY_SUBMITTED"
    ASSESSMENT_NOT_DRAFT = "ASSESSMENT_NOT_DRAFT"
    ELIGIBILITY_NOT_COMPLETED = "ELIGIBILITY_NOT_COMPLETED"
    ELIGIBILITY_FAILED = "ELIGIBILITY_FAILED"
    ELIGIBILITY_ALREADY_COMPLETED = "ELIGIBILITY_ALREADY_COMPLETED"
    INCOMPLETE_ASSESSMENT = "INCOMPLETE_ASSESSMENT"
    NO_ACTIVE_QUESTIONS = "NO_ACTIVE_QUESTIONS"
    INVALID_OTP = "INVALID_OTP"

    # System
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Codes for which retrying the same call can help
TRANSIENT_CODES = frozenset(
    {ErrorCode.DATABASE_ERROR, ErrorCode.EXTERNAL_API_ERROR, ErrorCode.UNKNOWN_ERROR}
)


class ApplicationError(Exception):
    """Base exception for all application errors."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code


class ValidationError(ApplicationError):
    """Raised when validation fails."""

    code = ErrorCode.INVALID_INPUT
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message, details, code)
        self.field = field
        if field:
            self.details["field"] = field


class NotFoundError(ApplicationError):
    """Raised when a requested resource is not found."""

    code = ErrorCode.RESOURCE_NOT_FOUND
    status_code = 404


class AuthenticationError(ApplicationError):
    """Raised when authentication fails."""

    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class AuthorizationError(ApplicationError):
    """Raised when authorization fails."""

    code = ErrorCode.INSUFFICIENT_PERMISSIONS
    status_code = 403


class ConflictError(ApplicationError):
    """Raised when there's a conflict with existing data."""

    code = ErrorCode.DUPLICATE_RESOURCE
    status_code = 409


class ConcurrencyError(ConflictError):
    """Raised when a record changed after the caller read it."""

    code = ErrorCode.CONCURRENT_MODIFICATION

    def __init__(
        self,
        message: str = "This record was modified by another user. Please refresh and try again.",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class BusinessLogicError(ApplicationError):
    """Raised when business logic constraints are violated."""

    code = ErrorCode.INVALID_STATUS_TRANSITION
    status_code = 400


class ExternalServiceError(ApplicationError):
    """Raised when a third-party integration fails."""

    code = ErrorCode.EXTERNAL_API_ERROR
    status_code = 502


class DatabaseError(ApplicationError):
    """Storage failure that did not map to a more specific error."""

    code = ErrorCode.DATABASE_ERROR
    status_code = 500


def invalid_status_transition(from_status: str, to_status: str) -> BusinessLogicError:
    return BusinessLogicError(
        f"Cannot transition from {from_status} to {to_status}",
        details={"from": from_status, "to": to_status},
    )


def not_draft(assessment_id: Any, status: str) -> BusinessLogicError:
    """Error for any mutation attempted on an assessment that left DRAFT."""
    code = (
        ErrorCode.ASSESSMENT_ALREADY_SUBMITTED
        if status == "SUBMITTED"
        else ErrorCode.ASSESSMENT_NOT_DRAFT
    )
    return BusinessLogicError(
        f"Assessment is {status}; only DRAFT assessments can be modified",
        details={"assessment_id": str(assessment_id), "status": status},
        code=code,
    )


def translate_db_error(error: Exception) -> ApplicationError:
    """Map storage-layer exceptions onto the application taxonomy."""
    if isinstance(error, ApplicationError):
        return error

    if isinstance(error, PydanticValidationError):
        return invalid_input(error)

    if isinstance(error, StaleDataError):
        return ConcurrencyError()

    if isinstance(error, IntegrityError):
        text = str(error.orig).lower() if error.orig is not None else str(error).lower()
        if "unique" in text or "duplicate" in text:
            if "cin" in text:
                return ConflictError(
                    "A lead with this CIN already exists", code=ErrorCode.DUPLICATE_CIN
                )
            return ConflictError("This resource already exists")
        logger.error(f"[DB] Integrity error: {text}")
        return DatabaseError("Invalid reference")

    if isinstance(error, SQLAlchemyError):
        logger.error(f"[DB] Storage error: {error}")
        return DatabaseError("A database error occurred")

    logger.error(f"[DB] Unexpected error: {error!r}", exc_info=error)
    return ApplicationError("An unexpected error occurred", details={"type": type(error).__name__})


def invalid_input(error: PydanticValidationError) -> ValidationError:
    """Convert a pydantic validation failure into INVALID_INPUT."""
    errors = error.errors(include_url=False, include_context=False, include_input=False)
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", "Invalid input")
    return ValidationError(message, field=field, details={"errors": errors})

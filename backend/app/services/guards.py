"""Checks shared by every mutating operation on leads and assessments."""

import logging
import uuid
from typing import Optional

from app.core.exceptions import (
    AuthorizationError,
    ConcurrencyError,
    ErrorCode,
    NotFoundError,
    not_draft,
)
from app.models.assessment import Assessment
from app.models.lead import Lead
from app.models.user import User
from app.repositories.assessment import AssessmentRepository

logger = logging.getLogger(__name__)


def check_optimistic_lock(record, expected_version: Optional[int]) -> None:
    """
    Compare the caller's version token with the stored one.

    ``None`` skips the explicit comparison; the versioned UPDATE still
    rejects a write that races another writer.
    """
    if expected_version is None:
        return
    if record.version != expected_version:
        logger.info(
            f"[LOCK] Stale write on {type(record).__name__} {record.id}: "
            f"expected v{expected_version}, current v{record.version}"
        )
        raise ConcurrencyError(
            details={"expected_version": expected_version, "current_version": record.version}
        )


def ensure_draft(assessment: Assessment) -> None:
    """Answers and question snapshots are editable only while DRAFT."""
    if not assessment.is_draft:
        raise not_draft(assessment.id, assessment.status)


async def load_editable_assessment(
    repository: AssessmentRepository,
    actor: User,
    assessment_id: uuid.UUID,
    expected_version: Optional[int] = None,
) -> Assessment:
    """Fresh read of an assessment the actor may edit, still in DRAFT, at the expected version.

    Answer edits and question-snapshot edits both go through here.
    """
    assessment = await load_assessment(repository, assessment_id)
    ensure_can_edit_assessment(actor, assessment)
    ensure_draft(assessment)
    check_optimistic_lock(assessment, expected_version)
    return assessment


async def load_assessment(repository: AssessmentRepository, assessment_id: uuid.UUID) -> Assessment:
    assessment = await repository.get_by_id(assessment_id, refresh=True)
    if not assessment:
        raise NotFoundError(
            f"Assessment {assessment_id} not found", code=ErrorCode.ASSESSMENT_NOT_FOUND
        )
    return assessment


def ensure_active(actor: User) -> None:
    if not actor.is_active:
        raise AuthorizationError("User account is inactive", code=ErrorCode.USER_INACTIVE)


def ensure_reviewer(actor: User) -> None:
    ensure_active(actor)
    if not actor.is_reviewer:
        raise AuthorizationError("Only reviewers can perform this action")


def ensure_can_access_lead(actor: User, lead: Lead) -> None:
    ensure_active(actor)
    if actor.is_reviewer:
        return
    if lead.assigned_assessor_id != actor.id:
        raise AuthorizationError(
            "You are not assigned to this lead", code=ErrorCode.ASSESSOR_NOT_ASSIGNED
        )


def ensure_can_edit_assessment(actor: User, assessment: Assessment) -> None:
    ensure_active(actor)
    if actor.is_reviewer:
        return
    if assessment.assessor_id != actor.id:
        raise AuthorizationError(
            "You are not assigned to this assessment", code=ErrorCode.ASSESSOR_NOT_ASSIGNED
        )

"""Organic submission endpoints. Creation and email verification are public."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_notifier
from app.api.responses import respond
from app.models.user import User
from app.schemas.lead import LeadResponse
from app.schemas.submission import (
    SubmissionCreate,
    SubmissionReject,
    SubmissionResponse,
    VerifyEmailRequest,
)
from app.services.notification_service import NotificationDispatcher
from app.services.organic_submission_service import OrganicSubmissionService

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post("/", summary="Submit a company for assessment", status_code=201)
async def create_submission(
    request: SubmissionCreate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = OrganicSubmissionService(db, notifier=notifier)
    result = await service.create_submission(request)
    return respond(result, SubmissionResponse, success_status=201)


@router.post("/verify-email", summary="Confirm the contact email address")
async def verify_email(
    request: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await OrganicSubmissionService(db).verify_email(request.token)
    return respond(result, SubmissionResponse)


@router.get("/", summary="Pending submissions")
async def list_pending(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await OrganicSubmissionService(db).list_pending(current_user)
    return respond(result, SubmissionResponse)


@router.post("/{submission_id}/convert", summary="Convert a submission into a lead")
async def convert_to_lead(
    submission_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await OrganicSubmissionService(db).convert_to_lead(current_user, submission_id)
    return respond(result, LeadResponse)


@router.post("/{submission_id}/reject", summary="Reject a submission")
async def reject_submission(
    submission_id: UUID,
    request: SubmissionReject,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await OrganicSubmissionService(db).reject(current_user, submission_id, request.reason)
    return respond(result, SubmissionResponse)

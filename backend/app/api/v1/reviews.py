"""Reviewer queue endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.api.responses import respond
from app.models.user import User
from app.schemas.assessment import AssessmentResponse
from app.services.assessment_service import AssessmentService

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/pending", summary="Assessments awaiting review")
async def list_pending_reviews(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await AssessmentService(db).list_pending_reviews(current_user)
    return respond(result, AssessmentResponse)

"""Global question template bank endpoints (reviewers only)."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.api.responses import respond
from app.models.question import QuestionCategory
from app.models.user import User
from app.schemas.question import (
    QuestionTemplateCreate,
    QuestionTemplateResponse,
    QuestionTemplateUpdate,
)
from app.services.question_bank_service import QuestionBankService

router = APIRouter(prefix="/question-templates", tags=["question-templates"])


@router.get("/", summary="List question templates")
async def list_templates(
    category: Optional[QuestionCategory] = Query(None),
    include_inactive: bool = False,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionBankService(db).list_templates(
        current_user, category.value if category else None, include_inactive
    )
    return respond(result, QuestionTemplateResponse)


@router.post("/", summary="Add a question template", status_code=201)
async def add_template(
    request: QuestionTemplateCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionBankService(db).add_template(current_user, request)
    return respond(result, QuestionTemplateResponse, success_status=201)


@router.patch("/{template_id}", summary="Update a question template")
async def update_template(
    template_id: UUID,
    request: QuestionTemplateUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionBankService(db).update_template(current_user, template_id, request)
    return respond(result, QuestionTemplateResponse)


@router.delete("/{template_id}", summary="Deactivate a question template")
async def deactivate_template(
    template_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; assessments that already copied the question keep it."""
    result = await QuestionBankService(db).deactivate_template(current_user, template_id)
    return respond(result, QuestionTemplateResponse)

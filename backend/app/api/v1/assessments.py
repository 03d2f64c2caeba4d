"""Assessment lifecycle and question snapshot endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_notifier
from app.api.responses import respond
from app.models.user import User
from app.schemas.assessment import (
    AssessmentResponse,
    EligibilityResult,
    ReviewRequest,
    SubmitRequest,
    TransitionRequest,
    UpdateAnswersRequest,
    UpdateEligibilityRequest,
)
from app.schemas.question import (
    AssessmentQuestionResponse,
    QuestionCreate,
    QuestionUpdate,
    ReorderRequest,
)
from app.services.assessment_service import AssessmentService
from app.services.notification_service import NotificationDispatcher
from app.services.question_snapshot_service import QuestionSnapshotService

router = APIRouter(prefix="/assessments", tags=["assessments"])


@router.get("/{assessment_id}", summary="Get assessment")
async def get_assessment(
    assessment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await AssessmentService(db).get_assessment(current_user, assessment_id)
    return respond(result, AssessmentResponse)


# ============================================================================
# ELIGIBILITY
# ============================================================================


@router.put("/{assessment_id}/eligibility", summary="Save eligibility answers")
async def update_eligibility_answers(
    assessment_id: UUID,
    request: UpdateEligibilityRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replaces the whole eligibility answer map."""
    answers = {key: answer.model_dump() for key, answer in request.answers.items()}
    result = await AssessmentService(db).update_eligibility_answers(
        current_user, assessment_id, answers, request.expected_version
    )
    return respond(result, AssessmentResponse)


@router.post("/{assessment_id}/eligibility/complete", summary="Complete eligibility check")
async def complete_eligibility(
    assessment_id: UUID,
    request: TransitionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await AssessmentService(db).complete_eligibility(
        current_user, assessment_id, request.expected_version
    )
    return respond(result, EligibilityResult)


# ============================================================================
# QUESTIONNAIRE AND TRANSITIONS
# ============================================================================


@router.patch("/{assessment_id}/answers", summary="Save questionnaire answers")
async def update_answers(
    assessment_id: UUID,
    request: UpdateAnswersRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Merges partial answer maps; used by auto-save."""
    result = await AssessmentService(db).update_all_assessment_answers(
        current_user, assessment_id, request.answers, request.expected_version
    )
    return respond(result, AssessmentResponse)


@router.post("/{assessment_id}/submit", summary="Submit for review")
async def submit_assessment(
    assessment_id: UUID,
    request: SubmitRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = AssessmentService(db, notifier=notifier)
    result = await service.submit_assessment(current_user, assessment_id, request.expected_version)
    return respond(result, AssessmentResponse)


@router.post("/{assessment_id}/approve", summary="Approve a submitted assessment")
async def approve_assessment(
    assessment_id: UUID,
    request: ReviewRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = AssessmentService(db, notifier=notifier)
    result = await service.approve_assessment(
        current_user, assessment_id, request.remark, request.expected_version
    )
    return respond(result, AssessmentResponse)


@router.post("/{assessment_id}/reject", summary="Reject a submitted assessment")
async def reject_assessment(
    assessment_id: UUID,
    request: ReviewRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = AssessmentService(db, notifier=notifier)
    result = await service.reject_assessment(
        current_user, assessment_id, request.remark, request.expected_version
    )
    return respond(result, AssessmentResponse)


@router.post("/{assessment_id}/reopen", summary="Reopen a rejected assessment")
async def reopen_assessment(
    assessment_id: UUID,
    request: ReviewRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await AssessmentService(db).reopen_assessment(
        current_user, assessment_id, request.remark, request.expected_version
    )
    return respond(result, AssessmentResponse)


# ============================================================================
# QUESTION SNAPSHOT
# ============================================================================


@router.get("/{assessment_id}/questions", summary="List the assessment's questions")
async def get_questions(
    assessment_id: UUID,
    category: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionSnapshotService(db).get_questions(current_user, assessment_id, category)
    return respond(result, AssessmentQuestionResponse)


@router.post("/{assessment_id}/questions", summary="Add a custom question", status_code=201)
async def add_question(
    assessment_id: UUID,
    request: QuestionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionSnapshotService(db).add_question(current_user, assessment_id, request)
    return respond(result, AssessmentQuestionResponse, success_status=201)


@router.post("/{assessment_id}/questions/reorder", summary="Reorder one category")
async def reorder_questions(
    assessment_id: UUID,
    request: ReorderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionSnapshotService(db).reorder_questions(
        current_user,
        assessment_id,
        request.category.value,
        request.keys,
        request.expected_version,
    )
    return respond(result, AssessmentQuestionResponse)


@router.patch("/{assessment_id}/questions/{key}", summary="Edit a question")
async def edit_question(
    assessment_id: UUID,
    key: str,
    request: QuestionUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionSnapshotService(db).edit_question(
        current_user, assessment_id, key, request
    )
    return respond(result, AssessmentQuestionResponse)


@router.delete("/{assessment_id}/questions/{key}", summary="Remove a question")
async def remove_question(
    assessment_id: UUID,
    key: str,
    expected_version: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await QuestionSnapshotService(db).remove_question(
        current_user, assessment_id, key, expected_version
    )
    return respond(result, AssessmentQuestionResponse)

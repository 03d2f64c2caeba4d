"""
Assessment lifecycle.

States: DRAFT -> SUBMITTED -> APPROVED | REJECTED, with REJECTED -> DRAFT on an
explicit reviewer reopen. Inside DRAFT, eligibility moves from unset to
eligible or ineligible; main-questionnaire answers are accepted only once the
company is eligible. Scoring runs exactly once, at submit, and the result is
frozen together with the question snapshot.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import (
    BusinessLogicError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    invalid_input,
    invalid_status_transition,
)
from app.core.results import returns_result
from app.models.assessment import Assessment, AssessmentStatus
from app.models.base import utcnow
from app.models.lead import Lead, LeadStatus
from app.models.question import QuestionCategory, SCORED_CATEGORIES
from app.models.user import User, UserRole
from app.repositories.assessment import AssessmentRepository, AuditLogRepository
from app.repositories.lead import LeadRepository
from app.repositories.user import UserRepository
from app.schemas.assessment import (
    AssessmentAnswersUpdate,
    EligibilityResult,
    eligibility_answers_adapter,
)
from app.services.guards import (
    check_optimistic_lock,
    ensure_can_access_lead,
    ensure_can_edit_assessment,
    ensure_reviewer,
    load_assessment,
    load_editable_assessment,
)
from app.services.lead_service import advance_lead_status
from app.services.notification_service import EmailTemplate, NotificationDispatcher
from app.services.question_snapshot_service import QuestionSnapshotService
from app.services.scoring import calculate_preset_score

logger = logging.getLogger(__name__)


ASSESSMENT_TRANSITIONS = {
    AssessmentStatus.DRAFT.value: {AssessmentStatus.SUBMITTED.value},
    AssessmentStatus.SUBMITTED.value: {
        AssessmentStatus.APPROVED.value,
        AssessmentStatus.REJECTED.value,
    },
    AssessmentStatus.REJECTED.value: {AssessmentStatus.DRAFT.value},
    AssessmentStatus.APPROVED.value: set(),
}


def ensure_transition(assessment: Assessment, target: AssessmentStatus) -> None:
    if target.value not in ASSESSMENT_TRANSITIONS[assessment.status]:
        raise invalid_status_transition(assessment.status, target.value)


class AssessmentService:
    """
    Assessment state machine.

    Every public method is one transaction: fresh read, guard checks, mutation,
    versioned UPDATE, commit. Notifications go out only after the commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.notifier = notifier
        self.config = config
        self.assessment_repository = AssessmentRepository(db)
        self.lead_repository = LeadRepository(db)
        self.user_repository = UserRepository(db)
        self.audit_repository = AuditLogRepository(db)
        self.snapshots = QuestionSnapshotService(db)

    # ============================================================================
    # READS
    # ============================================================================

    @returns_result
    async def get_assessment(self, actor: User, assessment_id: uuid.UUID) -> Assessment:
        assessment = await load_assessment(self.assessment_repository, assessment_id)
        ensure_can_edit_assessment(actor, assessment)
        return assessment

    @returns_result
    async def get_assessment_for_lead(self, actor: User, lead_id: uuid.UUID) -> Assessment:
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        assessment = await self.assessment_repository.get_by_lead(lead.id)
        if not assessment:
            raise NotFoundError(
                f"No assessment for lead {lead.lead_id}", code=ErrorCode.ASSESSMENT_NOT_FOUND
            )
        return assessment

    @returns_result
    async def list_pending_reviews(self, actor: User) -> List[Assessment]:
        ensure_reviewer(actor)
        return await self.assessment_repository.list_pending_reviews()

    # ============================================================================
    # ELIGIBILITY
    # ============================================================================

    @returns_result
    async def update_eligibility_answers(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        answers: Mapping[str, Any],
        expected_version: int,
    ) -> Assessment:
        """Replace the whole eligibility answer map."""
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        if assessment.is_eligible is not None:
            raise BusinessLogicError(
                "Eligibility has already been completed",
                code=ErrorCode.ELIGIBILITY_ALREADY_COMPLETED,
            )

        try:
            parsed = eligibility_answers_adapter.validate_python(dict(answers))
        except PydanticValidationError as exc:
            raise invalid_input(exc) from exc

        questions = await self.snapshots.live_questions(
            assessment, QuestionCategory.ELIGIBILITY.value
        )
        _ensure_known_keys(parsed, {q.key for q in questions}, "eligibility")

        assessment.eligibility_answers = {
            key: answer.model_dump() for key, answer in parsed.items()
        }
        # Always emit the versioned UPDATE, even for an unchanged map
        assessment.updated_at = utcnow()
        await self.db.flush()
        await self.db.commit()
        logger.info(
            f"[ASSESSMENT] Eligibility answers saved for {assessment.id} "
            f"({len(parsed)} answers, v{assessment.version})"
        )
        return assessment

    @returns_result
    async def complete_eligibility(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        expected_version: Optional[int] = None,
    ) -> EligibilityResult:
        """
        Decide eligibility: every eligibility question must be checked.

        The assessment status does not change and the lead is left as it is;
        an ineligible assessment simply stays blocked from the questionnaire.
        """
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        if assessment.is_eligible is not None:
            raise BusinessLogicError(
                "Eligibility has already been completed",
                code=ErrorCode.ELIGIBILITY_ALREADY_COMPLETED,
            )

        questions = await self.snapshots.live_questions(
            assessment, QuestionCategory.ELIGIBILITY.value
        )
        if not questions:
            raise BusinessLogicError(
                "No eligibility questions are configured for this assessment",
                code=ErrorCode.NO_ACTIVE_QUESTIONS,
            )

        answers = assessment.eligibility_answers or {}
        failed = [q.key for q in questions if not (answers.get(q.key) or {}).get("checked")]
        is_eligible = not failed

        assessment.is_eligible = is_eligible
        assessment.eligibility_completed_at = utcnow()
        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action="ELIGIBILITY_COMPLETED",
            actor_id=actor.id,
            changes={"is_eligible": is_eligible, "failed_questions": failed},
        )
        await self.db.flush()
        await self.db.commit()

        logger.info(
            f"[ASSESSMENT] Eligibility for {assessment.id}: "
            f"{'ELIGIBLE' if is_eligible else 'INELIGIBLE'} ({len(failed)} unmet)"
        )
        return EligibilityResult(
            is_eligible=is_eligible, failed_questions=failed, version=assessment.version
        )

    # ============================================================================
    # QUESTIONNAIRE
    # ============================================================================

    @returns_result
    async def update_all_assessment_answers(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        answers: Union[AssessmentAnswersUpdate, Mapping[str, Any]],
        expected_version: int,
    ) -> Assessment:
        """Merge partial answer maps per category. No scoring happens here."""
        try:
            update = AssessmentAnswersUpdate.model_validate(answers)
        except PydanticValidationError as exc:
            raise invalid_input(exc) from exc

        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        _ensure_eligible(assessment)

        questions = await self.snapshots.live_questions(assessment)
        keys_by_category: Dict[str, set] = {}
        for question in questions:
            keys_by_category.setdefault(question.category, set()).add(question.key)

        changed = 0
        for category in SCORED_CATEGORIES:
            partial = getattr(update, category.value.lower())
            if not partial:
                continue
            _ensure_known_keys(partial, keys_by_category.get(category.value, set()), category.value.lower())
            attr = f"{category.value.lower()}_answers"
            merged = dict(getattr(assessment, attr) or {})
            merged.update({key: answer.model_dump() for key, answer in partial.items()})
            setattr(assessment, attr, merged)
            changed += len(partial)

        assessment.updated_at = utcnow()
        await self.db.flush()
        await self.db.commit()
        logger.info(
            f"[ASSESSMENT] Saved {changed} answers for {assessment.id} (v{assessment.version})"
        )
        return assessment

    @returns_result
    async def submit_assessment(
        self, actor: User, assessment_id: uuid.UUID, expected_version: int
    ) -> Assessment:
        """
        Score and freeze.

        Either every field (status, scores, snapshot freeze, lead status, audit)
        is written, or nothing is. A concurrent save or a second submit with the
        same version token loses at the versioned UPDATE.
        """
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        _ensure_eligible(assessment)
        ensure_transition(assessment, AssessmentStatus.SUBMITTED)

        questions = await self.snapshots.scoring_questions(assessment)
        if not questions:
            raise BusinessLogicError(
                "The assessment has no scored questions", code=ErrorCode.NO_ACTIVE_QUESTIONS
            )

        answers: Dict[str, Any] = {}
        for category in SCORED_CATEGORIES:
            answers.update(assessment.answers_for(category.value) or {})

        missing = [q.key for q in questions if q.key not in answers]
        if missing:
            raise ValidationError(
                f"{len(missing)} question(s) still need an answer",
                details={"missing": missing},
                code=ErrorCode.INCOMPLETE_ASSESSMENT,
            )

        result = calculate_preset_score(answers, questions)

        lead = await self._get_lead(assessment.lead_id)
        assessment.status = AssessmentStatus.SUBMITTED.value
        assessment.total_score = result.total_score
        assessment.max_score = result.max_score
        assessment.percentage = result.percentage
        assessment.rating = result.rating.value
        assessment.submitted_at = utcnow()
        await self.snapshots.freeze(assessment)
        old_lead_status = advance_lead_status(lead, LeadStatus.IN_REVIEW)

        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action="ASSESSMENT_SUBMITTED",
            actor_id=actor.id,
            old_status=AssessmentStatus.DRAFT.value,
            new_status=AssessmentStatus.SUBMITTED.value,
            changes={
                "total_score": str(result.total_score),
                "max_score": str(result.max_score),
                "percentage": str(result.percentage),
                "rating": result.rating.value,
                "lead_status": [old_lead_status, lead.status],
            },
        )
        await self.db.flush()
        await self.db.commit()

        logger.info(
            f"[ASSESSMENT] {assessment.id} submitted: {result.total_score}/{result.max_score} "
            f"({result.percentage}%, {result.rating.value})"
        )
        await self._notify_reviewers(assessment, lead, actor)
        return assessment

    # ============================================================================
    # REVIEW
    # ============================================================================

    @returns_result
    async def approve_assessment(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        remark: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Assessment:
        ensure_reviewer(actor)
        remark = _clean_remark(remark, self.config.MAX_REMARK_LENGTH)
        assessment = await load_assessment(self.assessment_repository, assessment_id)
        ensure_transition(assessment, AssessmentStatus.APPROVED)
        check_optimistic_lock(assessment, expected_version)

        lead = await self._get_lead(assessment.lead_id)
        self._record_review(assessment, actor, AssessmentStatus.APPROVED, remark)
        old_lead_status = advance_lead_status(lead, LeadStatus.PAYMENT_PENDING)
        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action="ASSESSMENT_APPROVED",
            actor_id=actor.id,
            old_status=AssessmentStatus.SUBMITTED.value,
            new_status=AssessmentStatus.APPROVED.value,
            remark=remark,
            changes={"lead_status": [old_lead_status, lead.status]},
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[ASSESSMENT] {assessment.id} approved by {actor.id}")

        if self.notifier and lead.email:
            self.notifier.dispatch(
                EmailTemplate.ASSESSMENT_APPROVED,
                lead.email,
                {
                    "company_name": lead.company_name,
                    "contact_person": lead.contact_person,
                    "percentage": assessment.percentage,
                    "rating": assessment.rating,
                    "remark": remark,
                },
            )
        return assessment

    @returns_result
    async def reject_assessment(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        remark: Optional[str],
        expected_version: Optional[int] = None,
    ) -> Assessment:
        ensure_reviewer(actor)
        remark = _clean_remark(remark, self.config.MAX_REMARK_LENGTH)
        if not remark:
            raise ValidationError("A remark is required to reject an assessment", field="remark")
        if len(remark) < self.config.MIN_REJECT_REMARK_LENGTH:
            raise ValidationError(
                f"Remark must be at least {self.config.MIN_REJECT_REMARK_LENGTH} characters",
                field="remark",
            )

        assessment = await load_assessment(self.assessment_repository, assessment_id)
        ensure_transition(assessment, AssessmentStatus.REJECTED)
        check_optimistic_lock(assessment, expected_version)

        self._record_review(assessment, actor, AssessmentStatus.REJECTED, remark)
        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action="ASSESSMENT_REJECTED",
            actor_id=actor.id,
            old_status=AssessmentStatus.SUBMITTED.value,
            new_status=AssessmentStatus.REJECTED.value,
            remark=remark,
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[ASSESSMENT] {assessment.id} rejected by {actor.id}")

        await self._notify_assessor(assessment, EmailTemplate.ASSESSMENT_REJECTED, {"remark": remark})
        return assessment

    @returns_result
    async def reopen_assessment(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        remark: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Assessment:
        """
        REJECTED -> DRAFT.

        The frozen snapshot revision stays frozen. A new editable revision is
        copied from it with the same question keys, so existing answers still
        line up. Scores are cleared; the previous result stays in the review
        history. The eligibility outcome is kept.
        """
        ensure_reviewer(actor)
        remark = _clean_remark(remark, self.config.MAX_REMARK_LENGTH)
        assessment = await load_assessment(self.assessment_repository, assessment_id)
        ensure_transition(assessment, AssessmentStatus.DRAFT)
        check_optimistic_lock(assessment, expected_version)

        await self.snapshots.start_new_revision(assessment)
        self._append_history(assessment, actor, "REOPENED", remark)
        assessment.status = AssessmentStatus.DRAFT.value
        assessment.total_score = None
        assessment.max_score = None
        assessment.percentage = None
        assessment.rating = None
        assessment.submitted_at = None

        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action="ASSESSMENT_REOPENED",
            actor_id=actor.id,
            old_status=AssessmentStatus.REJECTED.value,
            new_status=AssessmentStatus.DRAFT.value,
            remark=remark,
            changes={"snapshot_revision": assessment.snapshot_revision},
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(
            f"[ASSESSMENT] {assessment.id} reopened by {actor.id} "
            f"on revision {assessment.snapshot_revision}"
        )
        return assessment

    # ============================================================================
    # HELPERS
    # ============================================================================

    def _record_review(
        self,
        assessment: Assessment,
        actor: User,
        decision: AssessmentStatus,
        remark: Optional[str],
    ) -> None:
        assessment.status = decision.value
        assessment.reviewed_at = utcnow()
        assessment.reviewer_id = actor.id
        assessment.reviewer_remarks = remark
        self._append_history(assessment, actor, decision.value, remark)

    def _append_history(
        self, assessment: Assessment, actor: User, action: str, remark: Optional[str]
    ) -> None:
        entry = {
            "action": action,
            "remark": remark,
            "reviewer_id": str(actor.id),
            "reviewed_at": utcnow().isoformat(),
            "total_score": _as_str(assessment.total_score),
            "percentage": _as_str(assessment.percentage),
            "rating": assessment.rating,
        }
        history = list(assessment.review_history or []) + [entry]
        assessment.review_history = history[-self.config.REVIEW_HISTORY_MAX_ENTRIES:]

    async def _get_lead(self, lead_id: uuid.UUID) -> Lead:
        lead = await self.lead_repository.get_by_id(lead_id, refresh=True)
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found", code=ErrorCode.LEAD_NOT_FOUND)
        return lead

    async def _notify_reviewers(self, assessment: Assessment, lead: Lead, actor: User) -> None:
        if not self.notifier:
            return
        try:
            reviewers = await self.user_repository.list_active(UserRole.REVIEWER.value)
        except SQLAlchemyError as exc:
            logger.error(f"[ASSESSMENT] Reviewer lookup failed after commit for {assessment.id}: {exc}")
            return
        recipients = [r.email for r in reviewers]
        if not recipients:
            logger.warning(f"[ASSESSMENT] No active reviewers to notify for {assessment.id}")
            return
        self.notifier.dispatch(
            EmailTemplate.ASSESSMENT_SUBMITTED,
            recipients,
            {
                "company_name": lead.company_name,
                "lead_code": lead.lead_id,
                "lead_id": str(lead.id),
                "assessor_name": actor.name,
                "total_score": assessment.total_score,
                "max_score": assessment.max_score,
                "percentage": assessment.percentage,
                "rating": assessment.rating,
            },
        )

    async def _notify_assessor(
        self, assessment: Assessment, template: EmailTemplate, extra: Dict[str, Any]
    ) -> None:
        if not self.notifier or not assessment.assessor_id:
            return
        # The transition is already committed; a lookup failure only skips the email
        try:
            assessor = await self.user_repository.get_by_id(assessment.assessor_id)
            lead = await self.lead_repository.get_by_id(assessment.lead_id)
        except SQLAlchemyError as exc:
            logger.error(f"[ASSESSMENT] Assessor lookup failed after commit for {assessment.id}: {exc}")
            return
        if not assessor or not lead:
            return
        self.notifier.dispatch(
            template,
            assessor.email,
            {
                "assessor_name": assessor.name,
                "company_name": lead.company_name,
                "lead_code": lead.lead_id,
                "lead_id": str(lead.id),
                **extra,
            },
        )


def _ensure_eligible(assessment: Assessment) -> None:
    if assessment.is_eligible is None:
        raise BusinessLogicError(
            "Complete the eligibility check before answering the questionnaire",
            code=ErrorCode.ELIGIBILITY_NOT_COMPLETED,
        )
    if assessment.is_eligible is False:
        raise BusinessLogicError(
            "The company did not meet the eligibility criteria",
            code=ErrorCode.ELIGIBILITY_FAILED,
        )


def _ensure_known_keys(answers: Mapping[str, Any], known: set, section: str) -> None:
    unknown = sorted(set(answers) - known)
    if unknown:
        raise ValidationError(
            f"Unknown {section} question(s): {', '.join(unknown)}",
            field=section,
            details={"unknown": unknown},
        )


def _clean_remark(remark: Optional[str], max_length: int) -> Optional[str]:
    if remark is None:
        return None
    remark = remark.strip()
    if len(remark) > max_length:
        raise ValidationError(f"Remark must be at most {max_length} characters", field="remark")
    return remark or None


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)

"""Lead registry: creation, lookup, assignment and lead status transitions."""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    invalid_status_transition,
)
from app.core.results import returns_result
from app.models.assessment import Assessment, AssessmentStatus
from app.models.base import utcnow
from app.models.lead import Lead, LeadStatus
from app.models.user import User, UserRole
from app.repositories.assessment import AssessmentRepository, AuditLogRepository
from app.repositories.lead import LeadRepository, SequenceRepository
from app.repositories.user import UserRepository
from app.schemas.lead import CompanyProfile, LeadCreate, LeadUpdate
from app.services.guards import (
    check_optimistic_lock,
    ensure_active,
    ensure_can_access_lead,
    ensure_reviewer,
)
from app.services.notification_service import EmailTemplate, NotificationDispatcher
from app.services.question_snapshot_service import QuestionSnapshotService
from app.services.registry_client import RegistryClient

logger = logging.getLogger(__name__)


LEAD_TRANSITIONS = {
    LeadStatus.NEW.value: {LeadStatus.ASSIGNED.value},
    LeadStatus.ASSIGNED.value: {LeadStatus.IN_REVIEW.value},
    LeadStatus.IN_REVIEW.value: {LeadStatus.PAYMENT_PENDING.value},
    LeadStatus.PAYMENT_PENDING.value: {LeadStatus.COMPLETED.value},
    LeadStatus.COMPLETED.value: set(),
}


def ensure_lead_transition(current: str, target: str) -> None:
    if target not in LEAD_TRANSITIONS.get(current, set()):
        raise invalid_status_transition(current, target)


def advance_lead_status(lead: Lead, target: LeadStatus) -> str:
    """
    Side-effect transition driven by the assessment lifecycle.

    A lead already at the target, or already COMPLETED through payment, is left
    alone. Returns the status the lead had before the call.
    """
    previous = lead.status
    if previous in (target.value, LeadStatus.COMPLETED.value):
        return previous
    ensure_lead_transition(previous, target.value)
    lead.status = target.value
    return previous


class LeadService:
    """Service for lead operations."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        registry: Optional[RegistryClient] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.notifier = notifier
        self.registry = registry
        self.config = config
        self.lead_repository = LeadRepository(db)
        self.sequence_repository = SequenceRepository(db)
        self.assessment_repository = AssessmentRepository(db)
        self.user_repository = UserRepository(db)
        self.audit_repository = AuditLogRepository(db)
        self.snapshots = QuestionSnapshotService(db)

    async def generate_lead_id(self) -> str:
        """
        Next human-readable lead id, e.g. ``LD-2025-007``.

        The sequence is per calendar year and comes from one atomic counter
        increment, never read-then-write. A rolled-back transaction may leave
        a gap; it never produces a duplicate.
        """
        year = utcnow().year
        value = await self.sequence_repository.next_value(f"lead_id:{year}")
        padding = self.config.LEAD_ID_SEQUENCE_PADDING
        return f"{self.config.LEAD_ID_PREFIX}-{year}-{value:0{padding}d}"

    async def create_lead_record(
        self, data: LeadCreate, created_by: Optional[uuid.UUID] = None
    ) -> Lead:
        """Insert a NEW lead inside the caller's transaction."""
        if await self.lead_repository.get_by_cin(data.cin):
            raise ConflictError(
                "A lead with this CIN already exists",
                code=ErrorCode.DUPLICATE_CIN,
                details={"cin": data.cin},
            )

        lead = await self.lead_repository.create(
            lead_id=await self.generate_lead_id(),
            cin=data.cin,
            company_name=data.company_name,
            contact_person=data.contact_person,
            email=data.email,
            phone=data.phone,
            address=data.address,
            status=LeadStatus.NEW.value,
            created_by=created_by,
        )
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_CREATED",
            actor_id=created_by,
            new_status=lead.status,
            changes={"lead_id": lead.lead_id, "cin": lead.cin},
        )
        return lead

    # ============================================================================
    # PUBLIC OPERATIONS
    # ============================================================================

    @returns_result
    async def create_lead(self, actor: User, data: Union[LeadCreate, Dict[str, Any]]) -> Lead:
        ensure_reviewer(actor)
        data = LeadCreate.model_validate(data)
        lead = await self.create_lead_record(data, created_by=actor.id)
        await self.db.commit()
        logger.info(f"[LEAD] Created {lead.lead_id} for {lead.company_name} by {actor.id}")
        return lead

    @returns_result
    async def update_lead(
        self,
        actor: User,
        lead_id: uuid.UUID,
        data: Union[LeadUpdate, Dict[str, Any]],
        expected_version: int,
    ) -> Lead:
        data = LeadUpdate.model_validate(data)
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        check_optimistic_lock(lead, expected_version)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return lead
        lead = await self.lead_repository.save(lead, **changes)
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_UPDATED",
            actor_id=actor.id,
            changes={key: _jsonable(value) for key, value in changes.items()},
        )
        await self.db.commit()
        logger.info(f"[LEAD] Updated {lead.lead_id} fields {sorted(changes)} (v{lead.version})")
        return lead

    @returns_result
    async def get_lead(self, actor: User, lead_id: uuid.UUID) -> Lead:
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        return lead

    @returns_result
    async def list_leads(self, actor: User, status: Optional[str] = None) -> List[Lead]:
        """Assessors only see their own leads."""
        ensure_active(actor)
        if status:
            status = _lead_status(status)
        assessor_id = None if actor.is_reviewer else actor.id
        return await self.lead_repository.list_leads(status=status, assessor_id=assessor_id)

    @returns_result
    async def assign_assessor(
        self,
        actor: User,
        lead_id: uuid.UUID,
        assessor_id: uuid.UUID,
        expected_version: int,
    ) -> Lead:
        """
        Assign (or re-assign) an assessor.

        The first assignment moves the lead NEW -> ASSIGNED and creates the
        DRAFT assessment with its question snapshot in the same transaction.
        """
        ensure_reviewer(actor)
        lead = await self._get_lead(lead_id)
        check_optimistic_lock(lead, expected_version)

        assessor = await self.user_repository.get_by_id(assessor_id)
        if not assessor:
            raise NotFoundError(f"User {assessor_id} not found", code=ErrorCode.USER_NOT_FOUND)
        if assessor.role != UserRole.ASSESSOR.value or not assessor.is_active:
            raise ValidationError(
                "Leads can only be assigned to active assessors", field="assessor_id"
            )

        previous_status = lead.status
        if lead.status != LeadStatus.ASSIGNED.value:
            ensure_lead_transition(lead.status, LeadStatus.ASSIGNED.value)
            lead.status = LeadStatus.ASSIGNED.value
        previous_assessor = lead.assigned_assessor_id
        lead.assigned_assessor_id = assessor.id

        assessment = await self.assessment_repository.get_by_lead(lead.id)
        if assessment is None:
            assessment = Assessment(
                lead_id=lead.id,
                assessor_id=assessor.id,
                status=AssessmentStatus.DRAFT.value,
                snapshot_revision=1,
                eligibility_answers={},
                company_answers={},
                financial_answers={},
                sector_answers={},
                review_history=[],
            )
            self.db.add(assessment)
            await self.db.flush()
            await self.snapshots.fork_from_templates(assessment)
        else:
            assessment.assessor_id = assessor.id

        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_ASSIGNED",
            actor_id=actor.id,
            old_status=previous_status,
            new_status=lead.status,
            changes={
                "assessor_id": str(assessor.id),
                "previous_assessor_id": str(previous_assessor) if previous_assessor else None,
            },
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[LEAD] {lead.lead_id} assigned to {assessor.id} by {actor.id}")

        if self.notifier:
            self.notifier.dispatch(
                EmailTemplate.ASSESSOR_ASSIGNED,
                assessor.email,
                {
                    "assessor_name": assessor.name,
                    "company_name": lead.company_name,
                    "lead_code": lead.lead_id,
                    "lead_id": str(lead.id),
                },
            )
        return lead

    @returns_result
    async def update_lead_status(
        self,
        actor: User,
        lead_id: uuid.UUID,
        new_status: str,
        expected_version: int,
    ) -> Lead:
        ensure_reviewer(actor)
        target = _lead_status(new_status)
        lead = await self._get_lead(lead_id)
        check_optimistic_lock(lead, expected_version)
        ensure_lead_transition(lead.status, target)

        previous = lead.status
        lead.status = target
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_STATUS_UPDATED",
            actor_id=actor.id,
            old_status=previous,
            new_status=target,
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[LEAD] {lead.lead_id} status {previous} -> {target}")
        return lead

    @returns_result
    async def confirm_payment(self, lead_code: str, reference: str) -> Lead:
        """
        External payment confirmation. Moves the lead to COMPLETED from any
        status; a repeated confirmation is a no-op.
        """
        lead = await self.lead_repository.get_by_lead_id(lead_code)
        if not lead:
            raise NotFoundError(f"Lead {lead_code} not found", code=ErrorCode.LEAD_NOT_FOUND)
        if lead.status == LeadStatus.COMPLETED.value:
            logger.info(f"[LEAD] Duplicate payment confirmation for {lead_code} ({reference})")
            return lead

        previous = lead.status
        lead.status = LeadStatus.COMPLETED.value
        lead.payment_reference = reference
        lead.paid_at = utcnow()
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_STATUS_UPDATED",
            old_status=previous,
            new_status=lead.status,
            remark="Payment confirmed",
            changes={"payment_reference": reference},
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[LEAD] Payment confirmed for {lead_code}: {previous} -> COMPLETED")
        return lead

    @returns_result
    async def apply_registry_profile(
        self, actor: User, lead_id: uuid.UUID, expected_version: int
    ) -> CompanyProfile:
        """Fetch the company profile from the registry and cache it on the lead."""
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        check_optimistic_lock(lead, expected_version)

        registry = self.registry or RegistryClient(self.config)
        profile, payload = await registry.fetch_company(lead.cin)

        lead.registry_fetched = True
        lead.registry_fetched_at = utcnow()
        lead.registry_data = {
            "profile": profile.model_dump(mode="json"),
            "raw": payload,
        }
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="LEAD_UPDATED",
            actor_id=actor.id,
            changes={"registry_fetched": True},
        )
        await self.db.flush()
        await self.db.commit()
        logger.info(f"[LEAD] Registry profile cached for {lead.lead_id}")
        return profile

    async def _get_lead(self, lead_id: uuid.UUID) -> Lead:
        lead = await self.lead_repository.get_by_id(lead_id, refresh=True)
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found", code=ErrorCode.LEAD_NOT_FOUND)
        return lead


def _lead_status(value: str) -> str:
    try:
        return LeadStatus(value.upper()).value
    except ValueError:
        raise ValidationError(f"Unknown lead status '{value}'", field="status") from None


def _jsonable(value: Any) -> Any:
    return value if value is None or isinstance(value, (str, int, float, bool)) else str(value)

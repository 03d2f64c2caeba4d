"""Public company submissions awaiting reviewer triage."""

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import (
    BusinessLogicError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from app.core.results import returns_result
from app.models.base import as_utc, utcnow
from app.models.lead import Lead
from app.models.submission import OrganicSubmission, SubmissionStatus
from app.models.user import User, UserRole
from app.repositories.assessment import AuditLogRepository
from app.repositories.submission import OrganicSubmissionRepository
from app.repositories.user import UserRepository
from app.schemas.lead import LeadCreate
from app.schemas.submission import SubmissionCreate
from app.services.guards import ensure_reviewer
from app.services.lead_service import LeadService
from app.services.notification_service import EmailTemplate, NotificationDispatcher

logger = logging.getLogger(__name__)


class OrganicSubmissionService:
    """Queue of self-submitted companies that reviewers convert into leads."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.notifier = notifier
        self.config = config
        self.submission_repository = OrganicSubmissionRepository(db)
        self.user_repository = UserRepository(db)
        self.audit_repository = AuditLogRepository(db)

    @returns_result
    async def create_submission(
        self, data: Union[SubmissionCreate, Dict[str, Any]]
    ) -> OrganicSubmission:
        """
        Public entry point. One submission per CIN: a pending or converted
        entry blocks a new one, a rejected entry is reopened.
        """
        data = SubmissionCreate.model_validate(data)
        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + timedelta(hours=self.config.EMAIL_VERIFICATION_TTL_HOURS)

        existing = await self.submission_repository.get_by_cin(data.cin)
        if existing and existing.status == SubmissionStatus.PENDING.value:
            raise ConflictError(
                "A submission for this company is already awaiting review",
                details={"cin": data.cin},
            )
        if existing and existing.status == SubmissionStatus.CONVERTED.value:
            raise ConflictError(
                "This company is already registered",
                code=ErrorCode.DUPLICATE_CIN,
                details={"cin": data.cin},
            )

        fields = data.model_dump()
        fields["email"] = str(data.email).lower()
        if existing:
            submission = await self.submission_repository.save(
                existing,
                **fields,
                status=SubmissionStatus.PENDING.value,
                email_verified=False,
                verification_token=token,
                verification_expires_at=expires_at,
                reviewed_by=None,
                reviewed_at=None,
                rejection_reason=None,
            )
            logger.info(f"[SUBMISSION] Reopened rejected submission {submission.id} for {data.cin}")
        else:
            submission = await self.submission_repository.create(
                **fields,
                status=SubmissionStatus.PENDING.value,
                verification_token=token,
                verification_expires_at=expires_at,
            )
            logger.info(f"[SUBMISSION] New submission {submission.id} for {data.cin}")
        await self.db.commit()

        if self.notifier:
            self.notifier.dispatch(
                EmailTemplate.EMAIL_VERIFICATION,
                submission.email,
                {
                    "company_name": submission.company_name,
                    "contact_person": submission.contact_person,
                    "token": token,
                    "ttl_hours": self.config.EMAIL_VERIFICATION_TTL_HOURS,
                },
            )
            reviewers = await self.user_repository.list_active(UserRole.REVIEWER.value)
            if reviewers:
                self.notifier.dispatch(
                    EmailTemplate.ORGANIC_SUBMISSION,
                    [r.email for r in reviewers],
                    {
                        "company_name": submission.company_name,
                        "cin": submission.cin,
                        "contact_person": submission.contact_person,
                        "email": submission.email,
                    },
                )
        return submission

    @returns_result
    async def verify_email(self, token: str) -> OrganicSubmission:
        submission = await self.submission_repository.get_by_token(token)
        if not submission:
            raise NotFoundError("Verification link is invalid", code=ErrorCode.SUBMISSION_NOT_FOUND)
        if submission.email_verified:
            return submission
        expires_at = as_utc(submission.verification_expires_at)
        if expires_at is None or expires_at < utcnow():
            raise ValidationError("Verification link has expired", field="token")

        submission = await self.submission_repository.save(
            submission, email_verified=True, verification_expires_at=None
        )
        await self.db.commit()
        logger.info(f"[SUBMISSION] Email verified for submission {submission.id}")
        return submission

    @returns_result
    async def list_pending(self, actor: User) -> List[OrganicSubmission]:
        ensure_reviewer(actor)
        return await self.submission_repository.list_by_status(SubmissionStatus.PENDING.value)

    @returns_result
    async def convert_to_lead(self, actor: User, submission_id: uuid.UUID) -> Lead:
        """Create a NEW lead from the submission and mark it CONVERTED in one transaction."""
        ensure_reviewer(actor)
        submission = await self._get_pending(submission_id)

        lead = await LeadService(self.db, config=self.config).create_lead_record(
            LeadCreate(
                company_name=submission.company_name,
                cin=submission.cin,
                contact_person=submission.contact_person,
                email=submission.email,
                phone=submission.phone,
                address=submission.address,
            ),
            created_by=actor.id,
        )
        await self.submission_repository.save(
            submission,
            status=SubmissionStatus.CONVERTED.value,
            reviewed_by=actor.id,
            reviewed_at=utcnow(),
            lead_id=lead.id,
        )
        await self.audit_repository.log(
            entity_type="submission",
            entity_id=submission.id,
            action="SUBMISSION_CONVERTED",
            actor_id=actor.id,
            old_status=SubmissionStatus.PENDING.value,
            new_status=SubmissionStatus.CONVERTED.value,
            changes={"lead_id": str(lead.id)},
        )
        await self.db.commit()
        logger.info(f"[SUBMISSION] {submission.id} converted to lead {lead.lead_id}")
        return lead

    @returns_result
    async def reject(
        self, actor: User, submission_id: uuid.UUID, reason: Optional[str] = None
    ) -> OrganicSubmission:
        ensure_reviewer(actor)
        submission = await self._get_pending(submission_id)
        reason = reason.strip() if reason else None
        submission = await self.submission_repository.save(
            submission,
            status=SubmissionStatus.REJECTED.value,
            reviewed_by=actor.id,
            reviewed_at=utcnow(),
            rejection_reason=reason or None,
        )
        await self.audit_repository.log(
            entity_type="submission",
            entity_id=submission.id,
            action="SUBMISSION_REJECTED",
            actor_id=actor.id,
            old_status=SubmissionStatus.PENDING.value,
            new_status=SubmissionStatus.REJECTED.value,
            remark=reason,
        )
        await self.db.commit()
        logger.info(f"[SUBMISSION] {submission.id} rejected by {actor.id}")
        return submission

    async def _get_pending(self, submission_id: uuid.UUID) -> OrganicSubmission:
        submission = await self.submission_repository.get_by_id(submission_id, refresh=True)
        if not submission:
            raise NotFoundError(
                f"Submission {submission_id} not found", code=ErrorCode.SUBMISSION_NOT_FOUND
            )
        if submission.status != SubmissionStatus.PENDING.value:
            raise BusinessLogicError(
                f"Submission is already {submission.status.lower()}",
                details={"status": submission.status},
            )
        return submission

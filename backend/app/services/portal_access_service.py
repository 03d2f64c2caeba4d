"""
Client portal access.

Clients log in with a short one-time code mailed to the lead's contact
address. Codes are stored hashed, live for ``OTP_TTL_MINUTES`` and can be used
once; issuing a new code invalidates the previous one.
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import ErrorCode, NotFoundError, ValidationError
from app.core.results import returns_result
from app.models.base import as_utc, utcnow
from app.models.lead import Lead
from app.models.user import User
from app.repositories.document import OneTimeCodeRepository
from app.repositories.lead import LeadRepository
from app.services.guards import ensure_reviewer
from app.services.notification_service import EmailTemplate, NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_VERIFY_ATTEMPTS = 5


def hash_code(identifier: str, code: str) -> str:
    return hashlib.sha256(f"{identifier}:{code}".encode()).hexdigest()


class PortalAccessService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        config: Settings = settings,
    ):
        self.db = db
        self.notifier = notifier
        self.config = config
        self.code_repository = OneTimeCodeRepository(db)
        self.lead_repository = LeadRepository(db)

    async def issue_code(self, identifier: str) -> str:
        """Create a fresh code for ``identifier``, replacing any earlier one. Returns the plain code."""
        identifier = identifier.strip().lower()
        code = "".join(secrets.choice("0123456789") for _ in range(self.config.OTP_LENGTH))

        await self.code_repository.delete_for_identifier(identifier)
        await self.code_repository.create(
            identifier=identifier,
            code_hash=hash_code(identifier, code),
            expires_at=utcnow() + timedelta(minutes=self.config.OTP_TTL_MINUTES),
        )
        return code

    @returns_result
    async def request_code(self, email: str) -> bool:
        """
        Mail a login code when the address belongs to a lead contact.

        The answer is the same whether or not the address is known.
        """
        email = email.strip().lower()
        lead = await self.lead_repository.get_by_contact_email(email)
        if not lead:
            logger.info("[PORTAL] Code requested for unknown address")
            return True

        code = await self.issue_code(email)
        await self.db.commit()
        if self.notifier:
            self.notifier.dispatch(
                EmailTemplate.PORTAL_OTP,
                email,
                {"code": code, "ttl_minutes": self.config.OTP_TTL_MINUTES},
            )
        logger.info(f"[PORTAL] Code issued for lead {lead.lead_id}")
        return True

    @returns_result
    async def verify_code(self, identifier: str, code: str) -> bool:
        identifier = identifier.strip().lower()
        record = await self.code_repository.get_live(identifier)
        if not record:
            raise _invalid_code()

        expires_at = as_utc(record.expires_at)
        if expires_at < utcnow() or record.attempts >= MAX_VERIFY_ATTEMPTS:
            raise _invalid_code()

        if not hmac.compare_digest(record.code_hash, hash_code(identifier, code.strip())):
            record.attempts += 1
            await self.db.commit()
            raise _invalid_code()

        record.used_at = utcnow()
        await self.db.commit()
        logger.info("[PORTAL] Code verified")
        return True

    @returns_result
    async def send_portal_access(self, actor: User, lead_id: uuid.UUID) -> Lead:
        """Email the portal link to the lead's contact."""
        ensure_reviewer(actor)
        lead = await self.lead_repository.get_by_id(lead_id)
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found", code=ErrorCode.LEAD_NOT_FOUND)
        if not lead.email:
            raise ValidationError("Lead has no contact email", field="email")

        if self.notifier:
            self.notifier.dispatch(
                EmailTemplate.PORTAL_ACCESS,
                lead.email,
                {
                    "company_name": lead.company_name,
                    "contact_person": lead.contact_person,
                    "email": lead.email,
                },
            )
        logger.info(f"[PORTAL] Access link sent for {lead.lead_id} by {actor.id}")
        return lead


def _invalid_code() -> ValidationError:
    return ValidationError("Invalid or expired code", field="code", code=ErrorCode.INVALID_OTP)

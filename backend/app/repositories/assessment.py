"""Assessment repository for data access operations."""

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.assessment import Assessment, AssessmentStatus, AuditLog
from app.repositories.base import BaseRepository


class AssessmentRepository(BaseRepository[Assessment]):
    """Repository for assessment operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Assessment)

    async def get_by_lead(self, lead_id: uuid.UUID) -> Optional[Assessment]:
        result = await self.db.execute(select(Assessment).where(Assessment.lead_id == lead_id))
        return result.scalar_one_or_none()

    async def list_by_status(
        self, status: str, assessor_id: Optional[uuid.UUID] = None
    ) -> List[Assessment]:
        """Oldest submissions first so reviewers work the queue in order."""
        query = select(Assessment).where(Assessment.status == status)
        if assessor_id:
            query = query.where(Assessment.assessor_id == assessor_id)
        query = query.order_by(Assessment.submitted_at, Assessment.created_at)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_pending_reviews(self) -> List[Assessment]:
        return await self.list_by_status(AssessmentStatus.SUBMITTED.value)


class AuditLogRepository(BaseRepository[AuditLog]):
    """Append-only audit trail."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, AuditLog)

    async def log(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        action: str,
        actor_id: Optional[uuid.UUID] = None,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        remark: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            old_status=old_status,
            new_status=new_status,
            remark=remark,
            changes=changes,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def for_entity(self, entity_id: uuid.UUID, limit: int = 100) -> List[AuditLog]:
        query = (
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)
            .order_by(desc(AuditLog.created_at))
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

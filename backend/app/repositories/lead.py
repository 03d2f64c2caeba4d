"""Lead repository for data access operations."""

import uuid
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.lead import LEAD_STATUS_PRIORITY, Lead, SequenceCounter
from app.repositories.base import BaseRepository


class LeadRepository(BaseRepository[Lead]):
    """Repository for lead operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Lead)

    async def get_by_cin(self, cin: str) -> Optional[Lead]:
        result = await self.db.execute(select(Lead).where(Lead.cin == cin))
        return result.scalar_one_or_none()

    async def get_by_lead_id(self, lead_id: str) -> Optional[Lead]:
        result = await self.db.execute(select(Lead).where(Lead.lead_id == lead_id))
        return result.scalar_one_or_none()

    async def get_by_contact_email(self, email: str) -> Optional[Lead]:
        result = await self.db.execute(
            select(Lead)
            .where(func.lower(Lead.email) == email.lower())
            .order_by(Lead.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_leads(
        self,
        status: Optional[str] = None,
        assessor_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Lead]:
        """List leads by status priority, newest first within a status."""
        priority = case(
            LEAD_STATUS_PRIORITY,
            value=Lead.status,
            else_=len(LEAD_STATUS_PRIORITY) + 1,
        )
        query = select(Lead).order_by(priority, Lead.created_at.desc())

        if status:
            query = query.where(Lead.status == status)
        if assessor_id:
            query = query.where(Lead.assigned_assessor_id == assessor_id)
        if offset:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())


class SequenceRepository:
    """Atomic named counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_value(self, name: str) -> int:
        """
        Increment the counter and return the new value in one statement.

        ``INSERT ... ON CONFLICT DO UPDATE SET value = value + 1 RETURNING value``
        takes the row lock inside the statement, so concurrent callers never
        observe the same value.
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise NotImplementedError(f"Atomic counters are not supported on {dialect}")

        table = SequenceCounter.__table__
        statement = (
            insert(table)
            .values(name=name, value=1)
            .on_conflict_do_update(
                index_elements=[table.c.name],
                set_={"value": table.c.value + 1},
            )
            .returning(table.c.value)
        )
        result = await self.db.execute(statement)
        return result.scalar_one()

"""Organic submission repository."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.submission import OrganicSubmission
from app.repositories.base import BaseRepository


class OrganicSubmissionRepository(BaseRepository[OrganicSubmission]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, OrganicSubmission)

    async def get_by_cin(self, cin: str) -> Optional[OrganicSubmission]:
        result = await self.db.execute(select(OrganicSubmission).where(OrganicSubmission.cin == cin))
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str) -> Optional[OrganicSubmission]:
        result = await self.db.execute(
            select(OrganicSubmission).where(OrganicSubmission.verification_token == token)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: str) -> List[OrganicSubmission]:
        result = await self.db.execute(
            select(OrganicSubmission)
            .where(OrganicSubmission.status == status)
            .order_by(OrganicSubmission.created_at)
        )
        return list(result.scalars().all())

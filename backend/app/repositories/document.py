"""Document and one-time-code repositories."""

import uuid
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.document import Document, OneTimeCode
from app.repositories.base import BaseRepository


class DocumentRepository(BaseRepository[Document]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, Document)

    async def list_for_lead(self, lead_id: uuid.UUID) -> List[Document]:
        result = await self.db.execute(
            select(Document).where(Document.lead_id == lead_id).order_by(Document.created_at.desc())
        )
        return list(result.scalars().all())


class OneTimeCodeRepository(BaseRepository[OneTimeCode]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, OneTimeCode)

    async def get_live(self, identifier: str) -> Optional[OneTimeCode]:
        """Most recent unused code for the identifier."""
        result = await self.db.execute(
            select(OneTimeCode)
            .where(OneTimeCode.identifier == identifier, OneTimeCode.used_at.is_(None))
            .order_by(OneTimeCode.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def delete_for_identifier(self, identifier: str) -> None:
        await self.db.execute(delete(OneTimeCode).where(OneTimeCode.identifier == identifier))

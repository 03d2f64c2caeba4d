"""User repository."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, User)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one_or_none()

    async def list_active(self, role: Optional[str] = None) -> List[User]:
        query = select(User).where(User.is_active.is_(True))
        if role:
            query = query.where(User.role == role)
        result = await self.db.execute(query.order_by(User.name))
        return list(result.scalars().all())

"""Repositories for the template bank and per-assessment question snapshots."""

import uuid
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.question import AssessmentQuestion, QuestionTemplate
from app.repositories.base import BaseRepository


class QuestionTemplateRepository(BaseRepository[QuestionTemplate]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, QuestionTemplate)

    async def list_templates(
        self, category: Optional[str] = None, include_inactive: bool = False
    ) -> List[QuestionTemplate]:
        query = select(QuestionTemplate)
        if category:
            query = query.where(QuestionTemplate.category == category)
        if not include_inactive:
            query = query.where(QuestionTemplate.is_active.is_(True))
        query = query.order_by(QuestionTemplate.category, QuestionTemplate.order)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def next_order(self, category: str) -> int:
        result = await self.db.execute(
            select(func.max(QuestionTemplate.order)).where(QuestionTemplate.category == category)
        )
        current = result.scalar()
        return 0 if current is None else current + 1


class AssessmentQuestionRepository(BaseRepository[AssessmentQuestion]):
    def __init__(self, db: AsyncSession):
        super().__init__(db, AssessmentQuestion)

    async def list_revision(
        self,
        assessment_id: uuid.UUID,
        revision: int,
        category: Optional[str] = None,
    ) -> List[AssessmentQuestion]:
        query = select(AssessmentQuestion).where(
            AssessmentQuestion.assessment_id == assessment_id,
            AssessmentQuestion.revision == revision,
        )
        if category:
            query = query.where(AssessmentQuestion.category == category)
        query = query.order_by(AssessmentQuestion.category, AssessmentQuestion.order)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_by_key(
        self, assessment_id: uuid.UUID, revision: int, key: str
    ) -> Optional[AssessmentQuestion]:
        result = await self.db.execute(
            select(AssessmentQuestion).where(
                AssessmentQuestion.assessment_id == assessment_id,
                AssessmentQuestion.revision == revision,
                AssessmentQuestion.key == key,
            )
        )
        return result.scalar_one_or_none()

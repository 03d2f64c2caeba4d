"""Global question template bank."""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ErrorCode, NotFoundError
from app.core.results import returns_result
from app.models.question import QuestionCategory, QuestionTemplate, QuestionType
from app.models.user import User
from app.repositories.question import QuestionTemplateRepository
from app.schemas.question import QuestionTemplateCreate, QuestionTemplateUpdate
from app.services.guards import ensure_reviewer
from app.services.scoring import PRESET_QUESTIONS

logger = logging.getLogger(__name__)

ELIGIBILITY_SEED = (
    ("eligibility_paid_up_capital", "Is the post-issue paid-up capital at least ₹1 crore?"),
    ("eligibility_track_record", "Has the company been operational for at least three years?"),
    ("eligibility_net_worth", "Is the net worth positive as per the last audited balance sheet?"),
    (
        "eligibility_operating_profit",
        "Has the company reported operating profit in at least two of the last three years?",
    ),
    (
        "eligibility_no_defaults",
        "Is the company free of regulatory action, wilful-default or debarment orders?",
    ),
)


def question_type_for(category: str) -> str:
    if category == QuestionCategory.ELIGIBILITY.value:
        return QuestionType.CHECKBOX.value
    return QuestionType.SCORED.value


def seed_definitions() -> List[Dict[str, Any]]:
    """Template rows for a fresh install: 5 eligibility + the 11 preset scored questions."""
    rows: List[Dict[str, Any]] = []
    for order, (key, text) in enumerate(ELIGIBILITY_SEED):
        rows.append(
            {
                "key": key,
                "category": QuestionCategory.ELIGIBILITY.value,
                "text": text,
                "help_text": None,
                "order": order,
                "question_type": QuestionType.CHECKBOX.value,
                "weight": 0,
            }
        )

    orders: Dict[str, int] = {}
    for question in PRESET_QUESTIONS:
        order = orders.get(question.category, 0)
        orders[question.category] = order + 1
        rows.append(
            {
                "key": question.key,
                "category": question.category,
                "text": question.text,
                "help_text": question.help_text,
                "order": order,
                "question_type": QuestionType.SCORED.value,
                "weight": question.weight,
            }
        )
    return rows


class QuestionBankService:
    """CRUD over the global template bank. Snapshots copy from here at fork time."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.template_repository = QuestionTemplateRepository(db)

    async def seed(self) -> int:
        """Insert any seed template that is missing. Returns the number inserted."""
        existing = {t.key for t in await self.template_repository.list_templates(include_inactive=True)}
        rows = [QuestionTemplate(**row) for row in seed_definitions() if row["key"] not in existing]
        if rows:
            await self.template_repository.add_all(rows)
        await self.db.commit()
        logger.info(f"[QUESTION_BANK] Seeded {len(rows)} templates")
        return len(rows)

    @returns_result
    async def list_templates(
        self, actor: User, category: Optional[str] = None, include_inactive: bool = False
    ) -> List[QuestionTemplate]:
        ensure_reviewer(actor)
        return await self.template_repository.list_templates(category, include_inactive)

    @returns_result
    async def add_template(
        self, actor: User, data: Union[QuestionTemplateCreate, Dict[str, Any]]
    ) -> QuestionTemplate:
        ensure_reviewer(actor)
        data = QuestionTemplateCreate.model_validate(data)
        category = data.category.value

        template = await self.template_repository.create(
            key=f"{category.lower()}_{uuid.uuid4().hex[:10]}",
            category=category,
            text=data.text.strip(),
            help_text=data.help_text,
            order=await self.template_repository.next_order(category),
            question_type=question_type_for(category),
            weight=0 if category == QuestionCategory.ELIGIBILITY.value else data.weight,
        )
        await self.db.commit()
        logger.info(f"[QUESTION_BANK] Template {template.key} added by {actor.id}")
        return template

    @returns_result
    async def update_template(
        self,
        actor: User,
        template_id: uuid.UUID,
        data: Union[QuestionTemplateUpdate, Dict[str, Any]],
    ) -> QuestionTemplate:
        ensure_reviewer(actor)
        data = QuestionTemplateUpdate.model_validate(data)
        template = await self._get_template(template_id)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if template.category == QuestionCategory.ELIGIBILITY.value:
            changes.pop("weight", None)
        template = await self.template_repository.save(template, **changes)
        await self.db.commit()
        return template

    @returns_result
    async def deactivate_template(self, actor: User, template_id: uuid.UUID) -> QuestionTemplate:
        """Soft delete. Existing snapshots keep their copies."""
        ensure_reviewer(actor)
        template = await self._get_template(template_id)
        template = await self.template_repository.save(template, is_active=False)
        await self.db.commit()
        logger.info(f"[QUESTION_BANK] Template {template.key} deactivated by {actor.id}")
        return template

    async def _get_template(self, template_id: uuid.UUID) -> QuestionTemplate:
        template = await self.template_repository.get_by_id(template_id)
        if not template:
            raise NotFoundError(
                f"Question template {template_id} not found", code=ErrorCode.QUESTION_NOT_FOUND
            )
        return template

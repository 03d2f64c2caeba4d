"""
Per-assessment question snapshots.

Questions are copied from the template bank when an assessment is created and
from then on are edited independently. Edits are allowed only while the
owning assessment is DRAFT; submission freezes the live revision. Every edit
touches the assessment row, so snapshot changes take part in the same
optimistic lock as answer edits.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BusinessLogicError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from app.core.results import returns_result
from app.models.assessment import Assessment
from app.models.base import utcnow
from app.models.question import AssessmentQuestion, QuestionCategory
from app.models.user import User
from app.repositories.assessment import AssessmentRepository, AuditLogRepository
from app.repositories.question import AssessmentQuestionRepository, QuestionTemplateRepository
from app.schemas.question import QuestionCreate, QuestionUpdate
from app.services.guards import (
    ensure_can_edit_assessment,
    load_assessment,
    load_editable_assessment,
)
from app.services.question_bank_service import question_type_for
from app.services.scoring import ScoringQuestion

logger = logging.getLogger(__name__)


class QuestionSnapshotService:
    """Copy-on-write question sets scoped to one assessment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.assessment_repository = AssessmentRepository(db)
        self.question_repository = AssessmentQuestionRepository(db)
        self.template_repository = QuestionTemplateRepository(db)
        self.audit_repository = AuditLogRepository(db)

    # ============================================================================
    # INTERNAL OPERATIONS (run inside the caller's transaction)
    # ============================================================================

    async def fork_from_templates(self, assessment: Assessment) -> List[AssessmentQuestion]:
        """Deep-copy every active template into revision 1 of the assessment."""
        templates = await self.template_repository.list_templates()
        rows = [
            AssessmentQuestion(
                assessment_id=assessment.id,
                revision=assessment.snapshot_revision,
                key=template.key,
                category=template.category,
                text=template.text,
                help_text=template.help_text,
                order=template.order,
                question_type=template.question_type,
                weight=template.weight,
                source_template_id=template.id,
                is_custom=False,
            )
            for template in templates
        ]
        # Template order may have gaps after deactivations
        _compact(rows)
        await self.question_repository.add_all(rows)
        logger.info(f"[SNAPSHOT] Forked {len(rows)} questions into assessment {assessment.id}")
        return rows

    async def live_questions(
        self, assessment: Assessment, category: Optional[str] = None
    ) -> List[AssessmentQuestion]:
        return await self.question_repository.list_revision(
            assessment.id, assessment.snapshot_revision, category
        )

    async def scoring_questions(self, assessment: Assessment) -> List[ScoringQuestion]:
        questions = await self.live_questions(assessment)
        return [
            ScoringQuestion(key=q.key, category=q.category, weight=q.weight, text=q.text)
            for q in questions
            if q.category != QuestionCategory.ELIGIBILITY.value
        ]

    async def freeze(self, assessment: Assessment) -> int:
        """Mark the live revision as the permanent record. Returns rows frozen."""
        now = utcnow()
        questions = await self.live_questions(assessment)
        for question in questions:
            question.frozen_at = now
        await self.db.flush()
        return len(questions)

    async def start_new_revision(self, assessment: Assessment) -> List[AssessmentQuestion]:
        """Copy the frozen live revision into an editable one with the same keys."""
        frozen = await self.live_questions(assessment)
        next_revision = assessment.snapshot_revision + 1
        rows = [
            AssessmentQuestion(
                assessment_id=assessment.id,
                revision=next_revision,
                key=q.key,
                category=q.category,
                text=q.text,
                help_text=q.help_text,
                order=q.order,
                question_type=q.question_type,
                weight=q.weight,
                source_template_id=q.source_template_id,
                is_custom=q.is_custom,
            )
            for q in frozen
        ]
        await self.question_repository.add_all(rows)
        assessment.snapshot_revision = next_revision
        logger.info(
            f"[SNAPSHOT] Assessment {assessment.id} now on revision {next_revision} "
            f"({len(rows)} questions)"
        )
        return rows

    # ============================================================================
    # PUBLIC OPERATIONS
    # ============================================================================

    @returns_result
    async def get_questions(
        self, actor: User, assessment_id: uuid.UUID, category: Optional[str] = None
    ) -> List[AssessmentQuestion]:
        assessment = await load_assessment(self.assessment_repository, assessment_id)
        ensure_can_edit_assessment(actor, assessment)
        return await self.live_questions(assessment, _category(category) if category else None)

    @returns_result
    async def add_question(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        data: Union[QuestionCreate, Dict[str, Any]],
    ) -> AssessmentQuestion:
        data = QuestionCreate.model_validate(data)
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, data.expected_version
        )
        category = data.category.value
        _ensure_eligibility_open(assessment, category)

        siblings = await self.live_questions(assessment, category)
        question = AssessmentQuestion(
            assessment_id=assessment.id,
            revision=assessment.snapshot_revision,
            key=f"custom_{uuid.uuid4().hex[:12]}",
            category=category,
            text=data.text.strip(),
            help_text=data.help_text,
            order=len(siblings),
            question_type=question_type_for(category),
            weight=0 if category == QuestionCategory.ELIGIBILITY.value else data.weight,
            is_custom=True,
        )
        self.db.add(question)
        await self._touch(assessment, actor, "QUESTION_ADDED", {"key": question.key, "category": category})
        await self.db.commit()
        logger.info(f"[SNAPSHOT] Question {question.key} added to {assessment.id} by {actor.id}")
        return question

    @returns_result
    async def edit_question(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        key: str,
        data: Union[QuestionUpdate, Dict[str, Any]],
    ) -> AssessmentQuestion:
        data = QuestionUpdate.model_validate(data)
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, data.expected_version
        )
        question = await self._get_question(assessment, key)
        _ensure_eligibility_open(assessment, question.category)

        changes = data.model_dump(exclude_unset=True, exclude={"expected_version"})
        if question.category == QuestionCategory.ELIGIBILITY.value:
            changes.pop("weight", None)
        for field, value in changes.items():
            setattr(question, field, value.strip() if field == "text" else value)

        await self._touch(assessment, actor, "QUESTION_EDITED", {"key": key, **changes})
        await self.db.commit()
        return question

    @returns_result
    async def remove_question(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        key: str,
        expected_version: Optional[int] = None,
    ) -> List[AssessmentQuestion]:
        """Delete a question, drop its answer and close the gap in the ordering."""
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        question = await self._get_question(assessment, key)
        category = question.category
        _ensure_eligibility_open(assessment, category)

        await self.db.delete(question)
        await self.db.flush()

        remaining = await self.live_questions(assessment, category)
        _compact(remaining)

        answers_attr = (
            "eligibility_answers"
            if category == QuestionCategory.ELIGIBILITY.value
            else f"{category.lower()}_answers"
        )
        answers = dict(getattr(assessment, answers_attr) or {})
        if answers.pop(key, None) is not None:
            setattr(assessment, answers_attr, answers)

        await self._touch(assessment, actor, "QUESTION_REMOVED", {"key": key, "category": category})
        await self.db.commit()
        return remaining

    @returns_result
    async def reorder_questions(
        self,
        actor: User,
        assessment_id: uuid.UUID,
        category: str,
        ordered_keys: Sequence[str],
        expected_version: Optional[int] = None,
    ) -> List[AssessmentQuestion]:
        """
        Rewrite the order of one category to 0..n-1.

        ``ordered_keys`` must list every question of the category exactly once;
        relative moves are not accepted.
        """
        category = _category(category)
        assessment = await load_editable_assessment(
            self.assessment_repository, actor, assessment_id, expected_version
        )
        questions = await self.live_questions(assessment, category)
        by_key = {q.key: q for q in questions}

        if len(ordered_keys) != len(set(ordered_keys)):
            raise ValidationError("Duplicate question keys in ordering", field="keys")
        if set(ordered_keys) != set(by_key):
            raise ValidationError(
                "Ordering must contain every question of the category exactly once",
                field="keys",
                details={
                    "missing": sorted(set(by_key) - set(ordered_keys)),
                    "unknown": sorted(set(ordered_keys) - set(by_key)),
                },
            )

        reordered = [by_key[key] for key in ordered_keys]
        _compact(reordered)

        await self._touch(assessment, actor, "QUESTIONS_REORDERED", {"category": category})
        await self.db.commit()
        return reordered

    async def _get_question(self, assessment: Assessment, key: str) -> AssessmentQuestion:
        question = await self.question_repository.get_by_key(
            assessment.id, assessment.snapshot_revision, key
        )
        if not question:
            raise NotFoundError(f"Question '{key}' not found", code=ErrorCode.QUESTION_NOT_FOUND)
        return question

    async def _touch(
        self, assessment: Assessment, actor: User, action: str, changes: Dict[str, Any]
    ) -> None:
        """Dirty the assessment row so the versioned UPDATE guards the edit."""
        assessment.updated_at = utcnow()
        await self.audit_repository.log(
            entity_type="assessment",
            entity_id=assessment.id,
            action=action,
            actor_id=actor.id,
            changes=changes,
        )
        await self.db.flush()


def _compact(questions: List[AssessmentQuestion]) -> None:
    """Renumber each category to 0..n-1 in the given sequence."""
    counters: Dict[str, int] = {}
    for question in questions:
        question.order = counters.get(question.category, 0)
        counters[question.category] = question.order + 1


def _category(value: str) -> str:
    try:
        return QuestionCategory(value.upper()).value
    except ValueError:
        raise ValidationError(f"Unknown question category '{value}'", field="category") from None


def _ensure_eligibility_open(assessment: Assessment, category: str) -> None:
    if category == QuestionCategory.ELIGIBILITY.value and assessment.is_eligible is not None:
        raise BusinessLogicError(
            "Eligibility has already been completed; its questions can no longer change",
            code=ErrorCode.ELIGIBILITY_ALREADY_COMPLETED,
        )

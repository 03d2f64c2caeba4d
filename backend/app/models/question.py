"""Question models - the global template bank and per-assessment snapshots."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class QuestionCategory(str, Enum):
    ELIGIBILITY = "ELIGIBILITY"
    COMPANY = "COMPANY"
    FINANCIAL = "FINANCIAL"
    SECTOR = "SECTOR"


SCORED_CATEGORIES = (
    QuestionCategory.COMPANY,
    QuestionCategory.FINANCIAL,
    QuestionCategory.SECTOR,
)


class QuestionType(str, Enum):
    CHECKBOX = "CHECKBOX"
    SCORED = "SCORED"


class QuestionTemplate(BaseModel):
    """Global question bank. Snapshots are copied from here, never aliased."""

    __tablename__ = "question_templates"

    # Stable id copied into snapshots and used as the answer-map key
    key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    help_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    question_type: Mapped[str] = mapped_column(String(20), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)


class AssessmentQuestion(BaseModel):
    """
    Assessment-scoped copy of a question.

    ``key`` is the id used in answer maps. It stays stable across revisions so
    a reopened assessment keeps its answers aligned with the copied questions.
    """

    __tablename__ = "assessment_questions"

    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False
    )
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    help_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    question_type: Mapped[str] = mapped_column(String(20), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    source_template_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("question_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frozen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("assessment_id", "revision", "key", name="uq_assessment_question_key"),
        Index("ix_assessment_questions_lookup", "assessment_id", "revision", "category", "order"),
    )

    @property
    def is_frozen(self) -> bool:
        return self.frozen_at is not None

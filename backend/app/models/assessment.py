"""Assessment models - assessments and the audit trail."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, JSONType


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Rating(str, Enum):
    IPO_READY = "IPO_READY"
    NEEDS_IMPROVEMENT = "NEEDS_IMPROVEMENT"
    NOT_READY = "NOT_READY"


class Assessment(BaseModel):
    """IPO-readiness assessment, one per lead."""

    __tablename__ = "assessments"

    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    assessor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=AssessmentStatus.DRAFT.value, nullable=False, index=True
    )

    # Live question snapshot revision
    snapshot_revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Eligibility: None = not yet completed
    is_eligible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    eligibility_answers: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    eligibility_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Main questionnaire, one map per scored category
    company_answers: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    financial_answers: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    sector_answers: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    # Scoring, frozen at submit
    total_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    max_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    rating: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewer_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def answers_for(self, category: str) -> Dict[str, Any]:
        return getattr(self, f"{category.lower()}_answers")

    @property
    def is_draft(self) -> bool:
        return self.status == AssessmentStatus.DRAFT.value


class AuditLog(BaseModel):
    """Append-only record of lead and assessment state changes."""

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changes: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

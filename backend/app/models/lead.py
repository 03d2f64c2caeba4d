"""Lead models - companies under evaluation and the lead-id counter."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BaseModel, JSONType


class LeadStatus(str, Enum):
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    IN_REVIEW = "IN_REVIEW"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    COMPLETED = "COMPLETED"


# Reviewer dashboard ordering
LEAD_STATUS_PRIORITY = {
    LeadStatus.NEW.value: 1,
    LeadStatus.IN_REVIEW.value: 2,
    LeadStatus.PAYMENT_PENDING.value: 3,
    LeadStatus.ASSIGNED.value: 4,
    LeadStatus.COMPLETED.value: 5,
}


class Lead(BaseModel):
    """A company under IPO-readiness evaluation."""

    __tablename__ = "leads"

    lead_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    cin: Mapped[str] = mapped_column(String(21), unique=True, nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=LeadStatus.NEW.value, nullable=False, index=True
    )

    # Contact
    contact_person: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    assigned_assessor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Cached company-registry profile
    registry_fetched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    registry_fetched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    registry_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic lock token; every UPDATE is guarded by it
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class SequenceCounter(Base):
    """Single-row-per-name counter incremented atomically by upsert."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

"""Pydantic schemas for lead API endpoints."""

import re
from datetime import date, datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

CIN_PATTERN = re.compile(r"^[UL]\d{5}[A-Z]{2}\d{4}[A-Z]{3}\d{6}$")
PHONE_PATTERN = re.compile(r"^\+91-[0-9]{10}$")
MAX_ADDRESS_LENGTH = 500


def normalize_cin(value: str) -> str:
    value = value.strip().upper()
    if not CIN_PATTERN.match(value):
        raise ValueError("Invalid CIN format")
    return value


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    value = value.strip()
    if not PHONE_PATTERN.match(value):
        raise ValueError("Phone must be in the format +91-XXXXXXXXXX")
    return value


class LeadContact(BaseModel):
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=MAX_ADDRESS_LENGTH)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return normalize_phone(value)


class LeadCreate(LeadContact):
    company_name: str = Field(..., min_length=2, max_length=255)
    cin: str

    @field_validator("cin")
    @classmethod
    def validate_cin(cls, value: str) -> str:
        return normalize_cin(value)

    @field_validator("company_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class LeadUpdate(LeadContact):
    """Contact fields only; identity fields never change after creation."""

    company_name: Optional[str] = Field(None, min_length=2, max_length=255)


class AssignAssessorRequest(BaseModel):
    assessor_id: UUID
    expected_version: int


class UpdateLeadRequest(BaseModel):
    data: LeadUpdate
    expected_version: int


class LeadStatusRequest(BaseModel):
    status: str
    expected_version: int


class VersionedRequest(BaseModel):
    expected_version: int


class PaymentConfirmation(BaseModel):
    lead_id: str = Field(..., description="Human-readable lead id, e.g. LD-2025-001")
    reference: str = Field(..., min_length=1, max_length=255)


class CompanyProfile(BaseModel):
    """Subset of the company-registry record the platform relies on."""

    cin: str
    legal_name: str
    company_status: Optional[str] = None
    classification: Optional[str] = None
    paid_up_capital: Optional[float] = None
    authorized_capital: Optional[float] = None
    pan: Optional[str] = None
    website: Optional[str] = None
    incorporation_date: Optional[date] = None
    compliance_status: Optional[str] = None
    director_count: Optional[int] = None
    gst_count: Optional[int] = None


class LeadResponse(BaseModel):
    id: UUID
    lead_id: str
    cin: str
    company_name: str
    status: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    assigned_assessor_id: Optional[UUID] = None
    registry_fetched: bool = False
    registry_data: Optional[Dict[str, Any]] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

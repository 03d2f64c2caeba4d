"""Schemas for public organic submissions, documents and the client portal."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.schemas.lead import MAX_ADDRESS_LENGTH, normalize_cin, normalize_phone


class SubmissionCreate(BaseModel):
    company_name: str = Field(..., min_length=2, max_length=255)
    cin: str
    contact_person: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=MAX_ADDRESS_LENGTH)

    @field_validator("cin")
    @classmethod
    def validate_cin(cls, value: str) -> str:
        return normalize_cin(value)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        return normalize_phone(value)


class SubmissionReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=16, max_length=64)


class SubmissionResponse(BaseModel):
    id: UUID
    cin: str
    company_name: str
    contact_person: str
    email: str
    phone: Optional[str] = None
    status: str
    email_verified: bool
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    lead_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DocumentResponse(BaseModel):
    id: UUID
    lead_id: UUID
    uploaded_by: Optional[UUID] = None
    filename: str
    content_type: str
    size_bytes: int
    url: str
    created_at: datetime

    model_config = {"from_attributes": True}


class OtpRequest(BaseModel):
    email: EmailStr


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=4, max_length=10)

"""Pydantic schemas for the template bank and assessment question snapshots."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.question import QuestionCategory


class QuestionTemplateCreate(BaseModel):
    category: QuestionCategory
    text: str = Field(..., min_length=3, max_length=2000)
    help_text: Optional[str] = Field(None, max_length=2000)
    weight: int = Field(2, ge=1, le=10)


class QuestionTemplateUpdate(BaseModel):
    text: Optional[str] = Field(None, min_length=3, max_length=2000)
    help_text: Optional[str] = Field(None, max_length=2000)
    weight: Optional[int] = Field(None, ge=1, le=10)
    order: Optional[int] = Field(None, ge=0)


class QuestionTemplateResponse(BaseModel):
    id: UUID
    key: str
    category: str
    text: str
    help_text: Optional[str] = None
    order: int
    question_type: str
    weight: int
    is_active: bool

    model_config = {"from_attributes": True}


class QuestionCreate(BaseModel):
    category: QuestionCategory
    text: str = Field(..., min_length=3, max_length=2000)
    help_text: Optional[str] = Field(None, max_length=2000)
    weight: int = Field(2, ge=1, le=10)
    expected_version: Optional[int] = None


class QuestionUpdate(BaseModel):
    text: Optional[str] = Field(None, min_length=3, max_length=2000)
    help_text: Optional[str] = Field(None, max_length=2000)
    weight: Optional[int] = Field(None, ge=1, le=10)
    expected_version: Optional[int] = None

    @field_validator("text", "weight")
    @classmethod
    def not_null(cls, value):
        """Only help_text may be cleared; text and weight can be omitted but not nulled."""
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class ReorderRequest(BaseModel):
    category: QuestionCategory
    keys: List[str] = Field(..., description="Every question key of the category, in the new order")
    expected_version: Optional[int] = None


class AssessmentQuestionResponse(BaseModel):
    id: UUID
    key: str
    revision: int
    category: str
    text: str
    help_text: Optional[str] = None
    order: int
    question_type: str
    weight: int
    source_template_id: Optional[UUID] = None
    is_custom: bool
    frozen_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

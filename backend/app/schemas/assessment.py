"""Pydantic schemas for assessment API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

MAX_REMARK_LENGTH = 2000


class EligibilityAnswer(BaseModel):
    checked: bool = False
    remark: Optional[str] = Field(None, max_length=MAX_REMARK_LENGTH)


class ScoredAnswer(BaseModel):
    """-1 = not applicable, 0..2 = increasing readiness."""

    score: Literal[-1, 0, 1, 2]
    remark: Optional[str] = Field(None, max_length=MAX_REMARK_LENGTH)
    evidence_link: Optional[str] = Field(None, max_length=1024)


EligibilityAnswers = Dict[str, EligibilityAnswer]
ScoredAnswers = Dict[str, ScoredAnswer]

eligibility_answers_adapter = TypeAdapter(EligibilityAnswers)
scored_answers_adapter = TypeAdapter(ScoredAnswers)


class AssessmentAnswersUpdate(BaseModel):
    """Partial answer maps per scored category; omitted categories are untouched."""

    company: Optional[ScoredAnswers] = None
    financial: Optional[ScoredAnswers] = None
    sector: Optional[ScoredAnswers] = None


class UpdateEligibilityRequest(BaseModel):
    answers: EligibilityAnswers
    expected_version: int


class UpdateAnswersRequest(BaseModel):
    answers: AssessmentAnswersUpdate
    expected_version: int


class TransitionRequest(BaseModel):
    expected_version: Optional[int] = None


class SubmitRequest(BaseModel):
    expected_version: int


class ReviewRequest(BaseModel):
    remark: Optional[str] = Field(None, max_length=MAX_REMARK_LENGTH)
    expected_version: Optional[int] = None


class EligibilityResult(BaseModel):
    is_eligible: bool
    failed_questions: List[str] = Field(default_factory=list)
    version: int


class ReviewHistoryEntry(BaseModel):
    action: str
    remark: Optional[str] = None
    reviewer_id: Optional[str] = None
    reviewed_at: str
    total_score: Optional[str] = None
    percentage: Optional[str] = None
    rating: Optional[str] = None


class AssessmentResponse(BaseModel):
    id: UUID
    lead_id: UUID
    assessor_id: Optional[UUID] = None
    status: str
    snapshot_revision: int
    is_eligible: Optional[bool] = None
    eligibility_answers: Dict[str, Any] = Field(default_factory=dict)
    company_answers: Dict[str, Any] = Field(default_factory=dict)
    financial_answers: Dict[str, Any] = Field(default_factory=dict)
    sector_answers: Dict[str, Any] = Field(default_factory=dict)
    total_score: Optional[Decimal] = None
    max_score: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    rating: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewer_id: Optional[UUID] = None
    reviewer_remarks: Optional[str] = None
    review_history: List[ReviewHistoryEntry] = Field(default_factory=list)
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

"""Pydantic schemas for API requests and responses."""

from .assessment import (
    AssessmentAnswersUpdate,
    AssessmentResponse,
    EligibilityAnswer,
    EligibilityResult,
    ReviewRequest,
    ScoredAnswer,
    SubmitRequest,
    TransitionRequest,
    UpdateAnswersRequest,
    UpdateEligibilityRequest,
)
from .lead import (
    AssignAssessorRequest,
    CompanyProfile,
    LeadCreate,
    LeadResponse,
    LeadStatusRequest,
    LeadUpdate,
    PaymentConfirmation,
    UpdateLeadRequest,
    VersionedRequest,
)
from .question import (
    AssessmentQuestionResponse,
    QuestionCreate,
    QuestionTemplateCreate,
    QuestionTemplateResponse,
    QuestionTemplateUpdate,
    QuestionUpdate,
    ReorderRequest,
)
from .submission import (
    DocumentResponse,
    OtpRequest,
    OtpVerifyRequest,
    SubmissionCreate,
    SubmissionReject,
    SubmissionResponse,
    VerifyEmailRequest,
)

__all__ = [
    # Assessment
    "AssessmentAnswersUpdate",
    "AssessmentResponse",
    "EligibilityAnswer",
    "EligibilityResult",
    "ReviewRequest",
    "ScoredAnswer",
    "SubmitRequest",
    "TransitionRequest",
    "UpdateAnswersRequest",
    "UpdateEligibilityRequest",
    # Lead
    "AssignAssessorRequest",
    "CompanyProfile",
    "LeadCreate",
    "LeadResponse",
    "LeadStatusRequest",
    "LeadUpdate",
    "PaymentConfirmation",
    "UpdateLeadRequest",
    "VersionedRequest",
    # Questions
    "AssessmentQuestionResponse",
    "QuestionCreate",
    "QuestionTemplateCreate",
    "QuestionTemplateResponse",
    "QuestionTemplateUpdate",
    "QuestionUpdate",
    "ReorderRequest",
    # Submissions, documents, portal
    "DocumentResponse",
    "OtpRequest",
    "OtpVerifyRequest",
    "SubmissionCreate",
    "SubmissionReject",
    "SubmissionResponse",
    "VerifyEmailRequest",
]

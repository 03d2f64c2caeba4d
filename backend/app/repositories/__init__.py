"""Repository layer for data access."""

from .assessment import AssessmentRepository, AuditLogRepository
from .base import BaseRepository
from .document import DocumentRepository, OneTimeCodeRepository
from .lead import LeadRepository, SequenceRepository
from .question import AssessmentQuestionRepository, QuestionTemplateRepository
from .submission import OrganicSubmissionRepository
from .user import UserRepository

__all__ = [
    "BaseRepository",
    "AssessmentRepository",
    "AuditLogRepository",
    "DocumentRepository",
    "OneTimeCodeRepository",
    "LeadRepository",
    "SequenceRepository",
    "AssessmentQuestionRepository",
    "QuestionTemplateRepository",
    "OrganicSubmissionRepository",
    "UserRepository",
]

"""
Model registry to ensure proper import order and avoid circular dependencies.
Import all models here in dependency order.
"""

# Import base first
from app.models.base import Base, BaseModel

# Models without foreign keys
from app.models.user import User, UserRole
from app.models.question import (
    QuestionTemplate,
    QuestionCategory,
    QuestionType,
    SCORED_CATEGORIES,
)

# Leads before everything that references them
from app.models.lead import Lead, LeadStatus, LEAD_STATUS_PRIORITY, SequenceCounter

from app.models.assessment import Assessment, AssessmentStatus, AuditLog, Rating
from app.models.question import AssessmentQuestion
from app.models.submission import OrganicSubmission, SubmissionStatus
from app.models.document import Document, OneTimeCode

# Export all models
__all__ = [
    'Base',
    'BaseModel',
    'User',
    'UserRole',
    'QuestionTemplate',
    'QuestionCategory',
    'QuestionType',
    'SCORED_CATEGORIES',
    'Lead',
    'LeadStatus',
    'LEAD_STATUS_PRIORITY',
    'SequenceCounter',
    'Assessment',
    'AssessmentStatus',
    'AuditLog',
    'Rating',
    'AssessmentQuestion',
    'OrganicSubmission',
    'SubmissionStatus',
    'Document',
    'OneTimeCode',
]

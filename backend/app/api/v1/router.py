"""Main API v1 router combining all endpoints."""

from fastapi import APIRouter

from app.api.v1.assessments import router as assessments_router
from app.api.v1.leads import router as leads_router
from app.api.v1.payments import router as payments_router
from app.api.v1.portal import router as portal_router
from app.api.v1.question_templates import router as question_templates_router
from app.api.v1.reviews import router as reviews_router
from app.api.v1.submissions import router as submissions_router
from app.core.config import settings

# Create main v1 router
api_router = APIRouter(prefix=settings.API_V1_STR)

# Include all endpoint routers
api_router.include_router(leads_router)
api_router.include_router(assessments_router)
api_router.include_router(reviews_router)
api_router.include_router(question_templates_router)
api_router.include_router(submissions_router)
api_router.include_router(portal_router)
api_router.include_router(payments_router)

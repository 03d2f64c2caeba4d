"""Lead registry endpoints."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_blob, get_current_user, get_db, get_notifier, get_registry
from app.api.responses import respond
from app.models.user import User
from app.schemas.assessment import AssessmentResponse
from app.schemas.lead import (
    AssignAssessorRequest,
    CompanyProfile,
    LeadCreate,
    LeadResponse,
    LeadStatusRequest,
    UpdateLeadRequest,
    VersionedRequest,
)
from app.schemas.submission import DocumentResponse
from app.services.assessment_service import AssessmentService
from app.services.blob_store import BlobStore
from app.services.document_service import DocumentService
from app.services.lead_service import LeadService
from app.services.notification_service import NotificationDispatcher
from app.services.portal_access_service import PortalAccessService
from app.services.registry_client import RegistryClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


@router.get("/", summary="List leads")
async def list_leads(
    status: Optional[str] = Query(None, description="Filter by lead status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reviewers see every lead by status priority; assessors only their own."""
    result = await LeadService(db).list_leads(current_user, status)
    return respond(result, LeadResponse)


@router.post("/", summary="Create lead", status_code=201)
async def create_lead(
    request: LeadCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LeadService(db).create_lead(current_user, request)
    return respond(result, LeadResponse, success_status=201)


@router.get("/{lead_id}", summary="Get lead")
async def get_lead(
    lead_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LeadService(db).get_lead(current_user, lead_id)
    return respond(result, LeadResponse)


@router.patch("/{lead_id}", summary="Update lead contact details")
async def update_lead(
    lead_id: UUID,
    request: UpdateLeadRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LeadService(db).update_lead(
        current_user, lead_id, request.data, request.expected_version
    )
    return respond(result, LeadResponse)


@router.post("/{lead_id}/assign", summary="Assign an assessor")
async def assign_assessor(
    lead_id: UUID,
    request: AssignAssessorRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = LeadService(db, notifier=notifier)
    result = await service.assign_assessor(
        current_user, lead_id, request.assessor_id, request.expected_version
    )
    return respond(result, LeadResponse)


@router.post("/{lead_id}/status", summary="Change lead status")
async def update_lead_status(
    lead_id: UUID,
    request: LeadStatusRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LeadService(db).update_lead_status(
        current_user, lead_id, request.status, request.expected_version
    )
    return respond(result, LeadResponse)


@router.post("/{lead_id}/registry", summary="Fetch company profile from the registry")
async def fetch_registry_profile(
    lead_id: UUID,
    request: VersionedRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    registry: RegistryClient = Depends(get_registry),
):
    service = LeadService(db, registry=registry)
    result = await service.apply_registry_profile(current_user, lead_id, request.expected_version)
    return respond(result, CompanyProfile)


@router.get("/{lead_id}/assessment", summary="Get the assessment of a lead")
async def get_lead_assessment(
    lead_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await AssessmentService(db).get_assessment_for_lead(current_user, lead_id)
    return respond(result, AssessmentResponse)


# ============================================================================
# DOCUMENTS
# ============================================================================


@router.get("/{lead_id}/documents", summary="List lead documents")
async def list_documents(
    lead_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob),
):
    result = await DocumentService(db, blob_store).list_documents(current_user, lead_id)
    return respond(result, DocumentResponse)


@router.post("/{lead_id}/documents", summary="Upload a document", status_code=201)
async def upload_document(
    lead_id: UUID,
    file: UploadFile = File(..., description="PDF, JPEG or PNG, at most 10MB"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob),
):
    data = await file.read()
    logger.info(f"[DOCUMENTS] Upload {file.filename} ({len(data)} bytes) for lead {lead_id}")
    result = await DocumentService(db, blob_store).upload_document(
        current_user,
        lead_id,
        file.filename or "",
        file.content_type or "application/octet-stream",
        data,
    )
    return respond(result, DocumentResponse, success_status=201)


@router.delete("/{lead_id}/documents/{document_id}", summary="Delete a document")
async def delete_document(
    lead_id: UUID,
    document_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob),
):
    result = await DocumentService(db, blob_store).delete_document(current_user, document_id)
    return respond(result)


@router.post("/{lead_id}/portal-access", summary="Email the client portal link")
async def send_portal_access(
    lead_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = PortalAccessService(db, notifier=notifier)
    result = await service.send_portal_access(current_user, lead_id)
    return respond(result, LeadResponse)

"""Document service for lead attachments."""

import logging
import uuid
from pathlib import Path
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.exceptions import AuthorizationError, ErrorCode, NotFoundError, ValidationError
from app.core.results import returns_result
from app.models.document import Document
from app.models.lead import Lead
from app.models.user import User
from app.repositories.assessment import AuditLogRepository
from app.repositories.document import DocumentRepository
from app.repositories.lead import LeadRepository
from app.services.blob_store import BlobStore
from app.services.guards import ensure_can_access_lead

logger = logging.getLogger(__name__)


class DocumentService:
    """Service for document operations."""

    ALLOWED_MIME_TYPES = {
        "application/pdf": {".pdf"},
        "image/jpeg": {".jpg", ".jpeg"},
        "image/png": {".png"},
    }

    def __init__(self, db: AsyncSession, blob_store: BlobStore, config: Settings = settings):
        self.db = db
        self.blob_store = blob_store
        self.max_size = config.MAX_DOCUMENT_SIZE_BYTES
        self.document_repository = DocumentRepository(db)
        self.lead_repository = LeadRepository(db)
        self.audit_repository = AuditLogRepository(db)

    @returns_result
    async def upload_document(
        self,
        actor: User,
        lead_id: uuid.UUID,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Document:
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        extension = self._validate_file(filename, content_type, data)

        storage_key = f"leads/{lead.lead_id}/{uuid.uuid4().hex}{extension}"
        url = await self.blob_store.upload(data, storage_key, content_type)
        logger.info(f"[DOCUMENT] Stored {filename} ({len(data)} bytes) at {storage_key}")

        document = await self.document_repository.create(
            lead_id=lead.id,
            uploaded_by=actor.id,
            filename=Path(filename).name,
            content_type=content_type,
            size_bytes=len(data),
            storage_key=storage_key,
            url=url,
        )
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="DOCUMENT_UPLOADED",
            actor_id=actor.id,
            changes={"document_id": str(document.id), "filename": document.filename},
        )
        await self.db.commit()
        return document

    @returns_result
    async def list_documents(self, actor: User, lead_id: uuid.UUID) -> List[Document]:
        lead = await self._get_lead(lead_id)
        ensure_can_access_lead(actor, lead)
        return await self.document_repository.list_for_lead(lead.id)

    @returns_result
    async def delete_document(self, actor: User, document_id: uuid.UUID) -> uuid.UUID:
        """Only the uploader or a reviewer may delete. The blob goes first."""
        document = await self.document_repository.get_by_id(document_id)
        if not document:
            raise NotFoundError(
                f"Document {document_id} not found", code=ErrorCode.DOCUMENT_NOT_FOUND
            )
        lead = await self._get_lead(document.lead_id)
        ensure_can_access_lead(actor, lead)
        if not actor.is_reviewer and document.uploaded_by != actor.id:
            raise AuthorizationError("Only the uploader or a reviewer can delete this document")

        await self.blob_store.delete(document.url)
        await self.document_repository.delete(document)
        await self.audit_repository.log(
            entity_type="lead",
            entity_id=lead.id,
            action="DOCUMENT_DELETED",
            actor_id=actor.id,
            changes={"document_id": str(document_id), "filename": document.filename},
        )
        await self.db.commit()
        logger.info(f"[DOCUMENT] Deleted {document_id} by {actor.id}")
        return document_id

    def _validate_file(self, filename: str, content_type: str, data: bytes) -> str:
        if not filename:
            raise ValidationError("No filename provided", field="filename")
        extensions = self.ALLOWED_MIME_TYPES.get(content_type)
        if not extensions:
            raise ValidationError(
                f"File type {content_type} is not allowed. Upload a PDF, JPEG or PNG file",
                field="content_type",
            )
        extension = Path(filename).suffix.lower()
        if extension not in extensions:
            raise ValidationError(
                f"File extension {extension or '(none)'} does not match {content_type}",
                field="filename",
            )
        if not data:
            raise ValidationError("Empty file", field="file")
        if len(data) > self.max_size:
            raise ValidationError(
                f"File too large. Maximum size is {self.max_size // (1024 * 1024)}MB",
                field="file",
            )
        return extension

    async def _get_lead(self, lead_id: uuid.UUID) -> Lead:
        lead = await self.lead_repository.get_by_id(lead_id)
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found", code=ErrorCode.LEAD_NOT_FOUND)
        return lead

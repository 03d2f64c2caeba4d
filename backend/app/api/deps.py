"""API Dependencies."""
from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import IdentityGate, get_identity_gate
from app.core.database import async_session_maker
from app.models.user import User
from app.services.blob_store import BlobStore, get_blob_store
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.registry_client import RegistryClient

security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with async_session_maker() as session:
        yield session


def get_gate() -> IdentityGate:
    return get_identity_gate()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    gate: IdentityGate = Depends(get_gate),
) -> User:
    """Resolve the bearer token to an active user; raises AuthenticationError otherwise."""
    token = credentials.credentials if credentials else None
    return await gate.resolve(db, token)


def get_notifier() -> NotificationDispatcher:
    return get_notification_dispatcher()


def get_blob() -> BlobStore:
    return get_blob_store()


def get_registry() -> RegistryClient:
    return RegistryClient()


__all__ = [
    "get_db",
    "get_current_user",
    "get_gate",
    "get_notifier",
    "get_blob",
    "get_registry",
    "User",
]

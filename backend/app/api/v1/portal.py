"""Client portal login with one-time codes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_notifier
from app.api.responses import respond
from app.schemas.submission import OtpRequest, OtpVerifyRequest
from app.services.notification_service import NotificationDispatcher
from app.services.portal_access_service import PortalAccessService

router = APIRouter(prefix="/portal", tags=["portal"])


@router.post("/otp", summary="Request a login code")
async def request_code(
    request: OtpRequest,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    result = await PortalAccessService(db, notifier=notifier).request_code(str(request.email))
    return respond(result)


@router.post("/otp/verify", summary="Verify a login code")
async def verify_code(
    request: OtpVerifyRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await PortalAccessService(db).verify_code(str(request.email), request.code)
    return respond(result)

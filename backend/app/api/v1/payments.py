"""Payment processor callback."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.api.responses import respond
from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.schemas.lead import LeadResponse, PaymentConfirmation
from app.services.lead_service import LeadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def verify_payment_secret(x_payment_secret: Optional[str] = Header(None)) -> None:
    """
    Authenticate the callback with a static shared secret in ``X-Payment-Secret``.

    This deliberately does not verify the processor's HMAC signature over the
    request body; the caller is expected to be a relay that has already done so.
    """
    expected = settings.PAYMENT_WEBHOOK_SECRET
    if not expected or not x_payment_secret or not hmac.compare_digest(expected, x_payment_secret):
        logger.warning("[PAYMENTS] Rejected confirmation with a bad or missing secret")
        raise AuthenticationError("Invalid payment webhook secret")


@router.post(
    "/confirm",
    summary="Confirm payment for a lead",
    dependencies=[Depends(verify_payment_secret)],
)
async def confirm_payment(
    request: PaymentConfirmation,
    db: AsyncSession = Depends(get_db),
):
    result = await LeadService(db).confirm_payment(request.lead_id, request.reference)
    return respond(result, LeadResponse)

"""Render service results as HTTP responses."""

from typing import Any, Optional, Type

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.core.exceptions import ErrorCode
from app.core.results import ActionResult

STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.USER_INACTIVE: 403,
    ErrorCode.ASSESSOR_NOT_ASSIGNED: 403,
    ErrorCode.LEAD_NOT_FOUND: 404,
    ErrorCode.ASSESSMENT_NOT_FOUND: 404,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.QUESTION_NOT_FOUND: 404,
    ErrorCode.DOCUMENT_NOT_FOUND: 404,
    ErrorCode.SUBMISSION_NOT_FOUND: 404,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_CIN: 409,
    ErrorCode.DUPLICATE_RESOURCE: 409,
    ErrorCode.CONCURRENT_MODIFICATION: 409,
    ErrorCode.STALE_DATA: 409,
    ErrorCode.EXTERNAL_API_ERROR: 502,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}


def status_for(code: Optional[ErrorCode]) -> int:
    """Business-rule and validation codes are 400."""
    if code is None:
        return 500
    return STATUS_BY_CODE.get(code, 400)


def respond(
    result: ActionResult,
    schema: Optional[Type[BaseModel]] = None,
    success_status: int = 200,
) -> JSONResponse:
    """
    Serialize an ``ActionResult`` envelope.

    ``schema`` converts ORM objects (or lists of them) in ``data``.
    """
    if not result.success:
        return JSONResponse(
            status_code=status_for(result.code),
            content=jsonable_encoder(result.model_dump()),
        )

    data: Any = result.data
    if schema is not None and data is not None:
        if isinstance(data, list):
            data = [schema.model_validate(item).model_dump(mode="json") for item in data]
        else:
            data = schema.model_validate(data).model_dump(mode="json")
    content = {"success": True, "data": data, "error": None, "code": None, "details": {}}
    return JSONResponse(status_code=success_status, content=jsonable_encoder(content))

"""Tagged results returned by public service operations."""

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from app.core.exceptions import (
    ApplicationError,
    ErrorCode,
    TRANSIENT_CODES,
    translate_db_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class ActionResult(BaseModel, Generic[T]):
    """Success/failure envelope. Callers branch on ``success`` before reading ``data``."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"arbitrary_types_allowed": True}

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ApplicationError) -> "ActionResult":
        message = error.message
        if error.code in TRANSIENT_CODES:
            message = GENERIC_ERROR_MESSAGE
        return cls(success=False, error=message, code=error.code, details=error.details)

    @property
    def is_retryable(self) -> bool:
        return not self.success and self.code in TRANSIENT_CODES


def returns_result(
    func: Callable[..., Awaitable[Any]]
) -> Callable[..., Awaitable[ActionResult]]:
    """
    Wrap a service coroutine so it never raises across the public boundary.

    The wrapped method must live on an object exposing ``self.db``. On any
    failure the session is rolled back, the error is translated into the
    application taxonomy and returned as a failed ``ActionResult``.
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> ActionResult:
        try:
            data = await func(self, *args, **kwargs)
            return ActionResult.ok(data)
        except Exception as exc:
            await self.db.rollback()
            error = translate_db_error(exc)
            if error.code in TRANSIENT_CODES:
                logger.error(
                    f"[RESULT] {func.__qualname__} failed with {error.code.value}: {exc!r}"
                )
            else:
                logger.info(
                    f"[RESULT] {func.__qualname__} rejected with {error.code.value}: {error.message}"
                )
            return ActionResult.fail(error)

    return wrapper

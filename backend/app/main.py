import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.responses import status_for
from app.api.v1.router import api_router
from app.core.config import settings
from app.core.database import close_db
from app.core.exceptions import ApplicationError, ErrorCode
from app.core.results import ActionResult, GENERIC_ERROR_MESSAGE
from app.services.notification_service import get_notification_dispatcher

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_notification_dispatcher().drain()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="IPO readiness assessment platform",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware - must be added before other middleware and routes
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApplicationError)
async def application_error_handler(request: Request, exc: ApplicationError):
    result = ActionResult.fail(exc)
    return JSONResponse(status_code=exc.status_code, content=result.model_dump(mode="json"))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "data": None,
            "error": "Invalid input",
            "code": ErrorCode.INVALID_INPUT.value,
            "details": {"errors": errors},
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "data": None, "error": exc.detail, "code": None, "details": {}},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"[API] Unhandled error on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status_for(ErrorCode.UNKNOWN_ERROR),
        content={
            "success": False,
            "data": None,
            "error": GENERIC_ERROR_MESSAGE,
            "code": ErrorCode.UNKNOWN_ERROR.value,
            "details": {},
        },
    )


# Include API routes
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "version": "0.1.0"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

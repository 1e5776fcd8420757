"""
IPCR Portal - FastAPI Application

Middleware order (outermost first): CORS -> CorrelationId -> Logging.
init_db() runs once in the lifespan; every handler renders the same
ApiResponse envelope the service actions return.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Union

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import ipcr_portal.models  # noqa: F401  model registration
from ipcr_portal.core.config import settings
from ipcr_portal.core.exceptions import AppException
from ipcr_portal.core.limiter import limiter
from ipcr_portal.core.logging import setup_logging
from ipcr_portal.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from ipcr_portal.core.schemas import ApiResponse
from ipcr_portal.database import SessionLocal, init_db
from ipcr_portal.routers.api_router import api_router

# ============================================================================
# LOGGING SETUP
# ============================================================================
setup_logging()
logger = logging.getLogger(__name__)


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{settings.version} ({settings.environment})")
    try:
        init_db()
        logger.info("Database initialized")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    logger.info("Gracefully shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Individual Performance Commitment and Review workflow",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# ============================================================================
# RATE LIMITER
# ============================================================================
app.state.limiter = limiter

# ============================================================================
# MIDDLEWARE STACK (last added runs first)
# ============================================================================
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================
def _envelope(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse.fail(message, code=code, details=details).to_dict()
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI validation errors (422) with structured format."""
    errors = []
    for error in exc.errors():
        # loc is usually ('body', 'field_name')
        field = error["loc"][-1] if len(error["loc"]) > 0 else "unknown"
        errors.append({"field": str(field), "msg": error["msg"]})

    logger.warning(f"Validation Error: {errors}")
    return _envelope(422, "Request validation failed", "VALIDATION_ERROR", {"errors": errors})


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Domain exceptions raised outside a service action (e.g. in a route)."""
    logger.warning(f"AppException: {exc.message}", extra={"code": exc.error_code})
    return _envelope(exc.status_code, exc.message, exc.error_code, exc.details)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return _envelope(429, f"Rate limit exceeded: {exc.detail}", "RATE_LIMITED")


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: Union[HTTPException, StarletteHTTPException]):
    """Handle standard HTTP exceptions."""
    code = "UNAUTHORIZED" if exc.status_code == 401 else f"HTTP_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = _envelope(exc.status_code, message, code)
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Fallback handler for unhandled server errors."""
    logger.exception("Unhandled server error", extra={"path": request.url.path})
    return _envelope(500, "An unexpected server error occurred.", "INTERNAL_ERROR")


# ============================================================================
# ROUTER INCLUSION
# ============================================================================
app.include_router(api_router, prefix=settings.api_prefix)


# ============================================================================
# OPERATIONAL ENDPOINTS (at root level)
# ============================================================================
@app.get("/", tags=["Health"])
def root():
    """API root endpoint."""
    return {
        "message": "IPCR Portal API",
        "version": settings.version,
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
    }


@app.get("/readiness", tags=["Health"])
def readiness_check():
    """Readiness probe - verifies database connectivity."""
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
        return {
            "status": "ready",
            "components": {"database": "connected"},
        }
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")

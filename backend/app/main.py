import logging
import traceback
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from app.core.config import settings
from app.api.v1 import api_router
from app.db.session import check_db_connection
from app.core.exceptions import AuthenticationError, AuthzError
from app.core.logging_config import setup_logging, RequestLoggingMiddleware
from app.core.shutdown import lifespan_manager, RequestTrackingMiddleware

# Configure structured logging (JSON in production, colored in development)
setup_logging()
logger = logging.getLogger("wfm")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.
    Helps prevent XSS, clickjacking, and other common attacks.
    """
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Referrer policy - don't leak full URL to external sites
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Audit and role payloads carry PHI-adjacent data
        response.headers["Cache-Control"] = "no-store"

        return response


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: str
    reason: str | None = None
    detail: str | None = None
    timestamp: str
    path: str | None = None


class HealthResponse(BaseModel):
    """Health check response format."""
    status: str
    service: str
    version: str
    environment: str
    checks: dict[str, bool]


app = FastAPI(
    title="WFM Authorization API",
    description="Tenant-scoped roles, permission checks and audit trail for the WFM platform",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan_manager,  # Graceful startup/shutdown
)

# CORS origins configuration (defined early for use in exception handlers)
_default_dev_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
cors_origins = settings.ALLOWED_ORIGINS or _default_dev_origins


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers based on request origin."""
    origin = request.headers.get("origin", "")
    if origin in cors_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
        }
    return {}


@app.exception_handler(AuthzError)
async def authz_exception_handler(request: Request, exc: AuthzError) -> JSONResponse:
    """Authentication, authorization, quota and role errors with their machine-readable reason."""
    headers = get_cors_headers(request)
    if isinstance(exc, AuthenticationError) and exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    content = exc.to_dict()
    content.update(timestamp=datetime.utcnow().isoformat(), path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# Global exception handler - catches all unhandled exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that returns consistent error responses.
    In production, sensitive details are hidden to prevent information leakage.
    """
    error_id = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")

    # Log the full exception for debugging
    logger.error(
        f"Unhandled exception [{error_id}]: {exc}\n"
        f"Path: {request.url.path}\n"
        f"Method: {request.method}\n"
        f"Traceback: {traceback.format_exc()}"
    )

    headers = get_cors_headers(request)

    # In production, don't expose internal error details
    if settings.ENVIRONMENT.lower() == "production":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=f"An unexpected error occurred. Reference ID: {error_id}",
                timestamp=datetime.utcnow().isoformat(),
                path=request.url.path,
            ).model_dump(),
            headers=headers,
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=exc.__class__.__name__,
            detail=str(exc),
            timestamp=datetime.utcnow().isoformat(),
            path=request.url.path,
        ).model_dump(),
        headers=headers,
    )


# CORS Middleware (env-driven)
# When credentials are needed, we must specify exact origins (not "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security Headers Middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request tracking middleware for graceful shutdown
app.add_middleware(RequestTrackingMiddleware)

# Request logging middleware with timing and request IDs
app.add_middleware(RequestLoggingMiddleware)

# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)

# Prometheus metrics instrumentation
# Exposes /metrics endpoint for Prometheus scraping
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/health", "/metrics"],
    inprogress_name="wfm_inprogress_requests",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=False)


async def check_cache_store(request: Request) -> bool:
    """Ping the permission cache store; False when it is unreachable or not initialised."""
    authz = getattr(request.app.state, "authz", None)
    if authz is None:
        return False
    try:
        return await authz.cache_backend.ping()
    except Exception as e:
        logger.warning(f"Cache store health check failed: {e}")
        return False


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint that verifies dependencies.
    Returns 503 if the database is unhealthy. An unreachable cache store only
    degrades the service: permissions are then resolved from the database.
    """
    db_healthy = await check_db_connection()
    cache_healthy = await check_cache_store(request)

    checks = {
        "database": db_healthy,
        "cache": cache_healthy,
    }

    all_healthy = all(checks.values())
    response = HealthResponse(
        status="healthy" if all_healthy else ("degraded" if db_healthy else "unhealthy"),
        service="wfm-authz",
        version="1.0.0",
        environment=settings.ENVIRONMENT,
        checks=checks,
    )

    if not db_healthy:
        logger.warning(f"Health check failed (critical): {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )

    if not all_healthy:
        logger.info(f"Health check degraded (non-critical): {checks}")

    return response


@app.get("/")
async def root():
    return {"message": "Welcome to the WFM Authorization API"}

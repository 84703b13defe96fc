"""
ABOUTME: Main FastAPI application entry point for the quota service
ABOUTME: Configures middleware, CORS, error bodies and routes
"""

import time
import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.exceptions import HTTPException as StarletteHTTPException

from quota_service import __version__
from quota_service.api.routes import router
from quota_service.config import settings
from quota_service.exceptions import QuotaServiceError, TokenLockoutError
from quota_service.middleware.metrics import MetricsMiddleware
from quota_service.middleware.security import SecurityHeadersMiddleware
from quota_service.utils.logging import log_error, logger
from quota_service.utils.metrics import metrics_manager

# Initialize Sentry (if DSN is configured)
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment or settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        # Health data product: never ship PII to Sentry
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )
    logger.info(f"Sentry initialized for environment: {settings.sentry_environment or settings.environment}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logging"""
    logger.info("=" * 80)
    logger.info("Quota service starting...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Quota store backend: {settings.quota_store_backend}")
    logger.info(
        f"Gem window: {settings.gem_window_hours}h, token limit: {settings.token_limit}, "
        f"token lockout enabled: {settings.token_lockout_enabled}"
    )
    logger.info("=" * 80)

    metrics_manager.set_app_info(
        version=__version__,
        environment=settings.environment,
        store_backend=settings.quota_store_backend,
    )

    yield

    logger.info("Quota service shutting down...")


app = FastAPI(
    title="Quota Service API",
    description="Gem quotas, token lockouts and tier policy for the health chat product",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Metrics middleware (first, to track all requests)
app.add_middleware(MetricsMiddleware)

# Security headers middleware (after metrics, before CORS)
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware; preflight answers come from here
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to all requests"""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


# Logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing"""
    start_time = time.time()

    response = await call_next(request)

    latency_ms = int((time.time() - start_time) * 1000)

    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": latency_ms,
            "request_id": getattr(request.state, "request_id", None),
        },
    )

    return response


# Exception handlers: every failure body is {"error": "..."}


@app.exception_handler(QuotaServiceError)
async def quota_error_handler(request: Request, exc: QuotaServiceError):
    """Domain errors carry their own status code"""
    metrics_manager.track_error(type(exc).__name__, request.url.path)

    if exc.status_code >= 500:
        log_error(exc, request_id=getattr(request.state, "request_id", None))
    else:
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={"request_id": getattr(request.state, "request_id", None), **exc.details},
        )

    headers = None
    if isinstance(exc, TokenLockoutError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
    return JSONResponse(status_code=422, content={"error": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    request_id = getattr(request.state, "request_id", "unknown")

    log_error(exc, request_id=request_id)
    metrics_manager.track_error(type(exc).__name__, request.url.path)

    return JSONResponse(
        status_code=500, content={"error": "Internal server error", "request_id": request_id}
    )


# Include API routes
app.include_router(router, prefix=settings.api_v1_prefix)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {"service": "Quota Service API", "version": __version__, "status": "running", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "quota_service.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )

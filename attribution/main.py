"""
FastAPI application main module.
Conversion ingestion adapters, operator matching endpoints, error handling
and request logging.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import traceback
import uuid
import os
from contextlib import asynccontextmanager
from attribution.api.v1 import api_router
from attribution.api.deps import get_settings
from attribution.utils import setup_logging, get_logger
from attribution.database import engine
from attribution.database import Base
from attribution.errors import AttributionError, ValidationError
from attribution.models import db as _db_models  # noqa: F401  registers tables

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/attribution.log"),
    enable_console=True
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Conversion Attribution Service",
    description="""
    Ingests affiliate-network conversions and attributes them to member clicks.

    ## Ingestion
    * **Push webhook** - HMAC-SHA256 signed JSON, `POST /api/v1/webhooks/asp-conversion?source=<name>`
    * **Postback** - IP allow-listed GET, `GET /api/v1/webhooks/afb-postback`
    * **Polling** - scheduled pull, `POST /api/v1/cron/sync-afb-conversions`

    Re-delivered conversions are acknowledged with 200 and not recorded twice.

    ## Matching
    Ranked click candidates for conversions without a tracking id. Advisory only.

    ## Authentication
    Cron and matching endpoints take the shared operator secret:
    ```
    Authorization: Bearer <CRON_SECRET>
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)


# Request ID and request/response logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    # query strings are not logged; postbacks carry member ids there
    logger.info(
        "Request started",
        method=request.method,
        path=request.url.path,
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _is_development(request: Request) -> bool:
    # honour dependency overrides so tests can switch environments
    provider = request.app.dependency_overrides.get(get_settings, get_settings)
    return provider().is_development


# Custom exception handlers
@app.exception_handler(AttributionError)
async def attribution_exception_handler(request: Request, exc: AttributionError):
    """Map the pipeline's error taxonomy onto structured JSON responses."""
    request_id = _request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    content = {
        "success": False,
        "error": exc.message,
        "request_id": request_id
    }
    if exc.details is not None and (isinstance(exc, ValidationError) or _is_development(request)):
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors as 400s."""
    request_id = _request_id(request)
    details = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]

    logger.warning(
        "Request validation failed",
        errors=details,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Request validation failed",
            "details": details,
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = _request_id(request)

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "request_id": request_id
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions. Internals are only exposed in development."""
    request_id = _request_id(request)

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    content = {
        "success": False,
        "error": "Internal server error",
        "request_id": request_id
    }
    if _is_development(request):
        content["details"] = str(exc)
        content["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "conversion-attribution",
        "version": "1.0.0",
        "timestamp": time.time(),
    }


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Conversion Attribution Service API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

# Include API router with version prefix
app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "attribution.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["attribution"],
        log_level="info",
        access_log=True
    )

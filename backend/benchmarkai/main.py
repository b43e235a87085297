"""BenchmarkAI Backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog MUST run before the other app imports: structlog caches
# the processor chain on first use.
from benchmarkai.core.logging import configure_structlog
from benchmarkai.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from benchmarkai.api.routes import api_router
from benchmarkai.core.config import get_settings
from benchmarkai.core.exceptions import BenchmarkError, ConfigurationError
from benchmarkai.db import close_db, init_db
from benchmarkai.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)


def validate_required_settings() -> None:
    """Fail fast if any secret the lifecycle depends on is missing at startup."""
    settings = get_settings()
    if settings.debug:
        return  # Skip in dev/test mode
    required = {
        "database_url": settings.database_url,
        "supabase_jwt_secret": settings.supabase_jwt_secret,
        "stripe_secret_key": settings.stripe_secret_key,
        "stripe_webhook_secret": settings.stripe_webhook_secret,
        "stripe_price_standard": settings.stripe_price_standard,
        "stripe_price_pro": settings.stripe_price_pro,
        "stripe_price_agency": settings.stripe_price_agency,
        "anthropic_api_key": settings.anthropic_api_key,
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise ConfigurationError(f"Missing required settings at startup: {missing}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database once required secrets are validated."""
    # SIGTERM flips this so the health check returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_required_settings()
    logger.info("required_settings_validated")

    await init_db()
    logger.info("db_initialized")

    yield

    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")


def _request_context(request: Request) -> dict:
    return {
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
        "method": request.method,
        "user_id": getattr(request.state, "user_id", None),
    }


async def benchmark_error_handler(request: Request, exc: BenchmarkError) -> JSONResponse:
    """Map the typed error taxonomy to HTTP responses with debug_id tracking."""
    debug_id = str(uuid.uuid4())
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "benchmark_error",
        kind=exc.kind,
        status_code=exc.status_code,
        debug_id=debug_id,
        error=exc.message,
        **_request_context(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "kind": exc.kind, "debug_id": debug_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """HTTPException (auth failures, mostly) in the same {error, debug_id} shape."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        detail=exc.detail,
        **_request_context(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are client errors (400), not 422s."""
    debug_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning("request_validation_failed", debug_id=debug_id, error_count=len(errors), **_request_context(request))
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid request: {location} {first.get('msg', '')}".strip()
    return JSONResponse(
        status_code=400,
        content={"error": message, "kind": "BadRequest", "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback under a debug_id, return an opaque 500."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
        **_request_context(request),
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "debug_id": debug_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(BenchmarkError)(benchmark_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="BenchmarkAI - paid AI market benchmark reports",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted({settings.frontend_url, *settings.allowed_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "benchmarkai.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )

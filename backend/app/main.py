"""
DocDigest Backend: FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
Why:   A factory lets tests build a fresh app with their own dependency
       overrides, while production imports the module-level `app`.
How:   create_app() wires middleware, exception handlers and routers.
Who:   uvicorn (uvicorn app.main:app) and the test suite.

Application Architecture:
    ┌───────────────────────────────────────────────────────────────┐
    │                          FastAPI App                          │
    │                                                               │
    │  Middleware: Request ID → Access Log → Rate Limit → GZip → CORS│
    │                                                               │
    │  Routes:                                                      │
    │    POST /api/process        POST /api/process-guest           │
    │    GET  /api/usage          GET  /api/plans                   │
    │    GET  /api/summaries      GET  /api/summaries/{id}          │
    │    GET  /health                                               │
    │                                                               │
    │  Exception Handlers:                                          │
    │    Validation→400  Auth→401  NotFound→404  Extraction→422     │
    │    Upstream→429/502/503/504  RateLimit→429  Storage/DB→500    │
    └───────────────────────────────────────────────────────────────┘

Entitlement denials (403) are rendered by the process routes from the
orchestrator's result, not by an exception handler.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import (
    AuthenticationError,
    DatabaseError,
    DocDigestError,
    ExtractionError,
    FileStorageError,
    NoExtractableTextError,
    NotFoundError,
    RateLimitExceededError,
    UpstreamSummarizationError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import REQUEST_ID_HEADER, RequestIDLogFilter, RequestIDMiddleware, request_id_var
from app.routes import health, plans, process, summaries, usage

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure root logging once at startup.

    Format: 2024-01-15T12:00:00 [INFO] app.services.usage_ledger [a1b2c3d4] message
    The request ID comes from RequestIDLogFilter ("-" outside a request).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "pypdf"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("DocDigest Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and the plan table still work
        logger.error("Configuration error: %s", str(e))

    upload_dir = Path(settings.upload_tmp_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Upload directory: %s", upload_dir.resolve())
    logger.info(
        "Metering: %d words/page estimate, guest ceiling %d pages, summarizer timeout %.0fs",
        settings.words_per_page,
        settings.guest_max_pages,
        settings.summarizer_timeout_seconds,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("DocDigest Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "request_id": request_id_var.get() or None,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map DocDigestError subclasses to status codes and the common error body.

    Handlers never expose stack traces, SQL or file paths; those are logged.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        return error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Missing multipart field, malformed UUID path parameter, ...
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        return error_response(
            422,
            "request_validation_error",
            "The request is missing required fields or has invalid values.",
            {"fields": fields},
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return error_response(401, "authentication_required", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(404, "not_found", exc.message)

    @app.exception_handler(ExtractionError)
    async def handle_extraction_error(request: Request, exc: ExtractionError):
        logger.warning("Extraction failed: %s | Context: %s", exc.message, exc.context)
        return error_response(422, "extraction_failed", exc.message, {"format": exc.file_format})

    @app.exception_handler(NoExtractableTextError)
    async def handle_no_text(request: Request, exc: NoExtractableTextError):
        return error_response(422, "no_extractable_text", exc.message)

    @app.exception_handler(UpstreamSummarizationError)
    async def handle_upstream_error(request: Request, exc: UpstreamSummarizationError):
        # Covers CircuitBreakerOpenError, which carries reason=unavailable
        if exc.retryable:
            logger.warning("Summarizer failure (%s): %s", exc.reason.value, exc.context)
        else:
            logger.error("Summarizer failure (%s): %s", exc.reason.value, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return error_response(
            exc.status_code,
            f"upstream_{exc.reason.value}",
            exc.message,
            {"reason": exc.reason.value, "retryable": exc.retryable},
            headers=headers,
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("Database error: %s | Context: %s", exc.message, exc.context)
        return error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("File storage error: %s | Context: %s", exc.message, exc.context)
        return error_response(500, "server_error", exc.message)

    @app.exception_handler(DocDigestError)
    async def handle_docdigest_error(request: Request, exc: DocDigestError):
        logger.error("Unhandled application error %s: %s", type(exc).__name__, exc.message)
        return error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="DocDigest API",
        description=(
            "Upload PDF, DOCX, TXT, RTF or ODT documents and receive structured summaries "
            "generated by Google Gemini, metered per subscription plan."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Last added runs first: Request ID → Access Log → Rate Limit → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(process.router)
    app.include_router(usage.router)
    app.include_router(summaries.router)
    app.include_router(plans.router)
    app.include_router(health.router)

    return app


app = create_app()

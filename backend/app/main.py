"""
Papir Backend — FastAPI Application Factory
============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers.
Who:   uvicorn (uvicorn app.main:app) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌─────────┐ ┌────────────┐ ┌─────────┐ ┌─────────────┐  │
    │  │ Req ID  │→│ Rate Limit │→│ Logging │→│ GZip / CORS │  │
    │  └─────────┘ └────────────┘ └─────────┘ └─────────────┘  │
    │                                                          │
    │  Routes:                                                 │
    │  ┌────────────┐ ┌─────────┐ ┌──────────┐ ┌────────────┐  │
    │  │ /api/cards │ │ media   │ │ checkout │ │ /api/health│  │
    │  └────────────┘ └─────────┘ └──────────┘ └────────────┘  │
    │                                                          │
    │  Exception Handlers → {success: false, error, message}   │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration warnings, storage directory
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import (
    AlreadyActivatedError,
    DuplicateKeyError,
    NotActivatedError,
    NotFoundError,
    PapirError,
    RateLimitExceededError,
    StoreUnavailableError,
    UpstreamError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware, request_id_var
from app.routes import cards, checkout, health, media

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once for the server and the CLI.

    Format: 2024-06-10T12:00:00 [INFO] app.services.card_service [1f2e3d4c]: message
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Papir Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Not fatal: card routes work without payments or a public hostname
        logger.warning("%s", str(e))

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())
    logger.info("Card creation mode: %s", settings.card_creation_mode)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Papir Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request_id_var.get("")


def _envelope(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": error,
        "message": message,
        "request_id": _request_id(request),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy onto HTTP responses.

    Handler table:
        ValidationError / RequestValidationError → 400
        AlreadyActivatedError                     → 400
        NotActivatedError                         → 403
        NotFoundError                             → 404
        DuplicateKeyError                         → 409
        RateLimitExceededError                    → 429
        UpstreamError (incl. MediaStorageError)   → 500
        StoreUnavailableError                     → 503
        PapirError / Exception (fallback)         → 500

    5xx responses carry a generic or user-safe message; the context is logged
    server-side and never returned.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        missing = [
            ".".join(str(part) for part in err["loc"] if part != "body")
            for err in exc.errors()
            if err.get("type") == "missing"
        ]
        logger.warning("Request validation failed: %s", exc.errors())
        if missing:
            return _envelope(
                request, 400, "Missing required fields",
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )
        return _envelope(
            request, 400, "Invalid request",
            "Request body failed validation",
            details={"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]},
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        return _envelope(request, 400, "Invalid request", exc.message, details=exc.context)

    @app.exception_handler(AlreadyActivatedError)
    async def handle_already_activated(request: Request, exc: AlreadyActivatedError):
        return _envelope(request, 400, "Card already activated", exc.message, details=exc.context)

    @app.exception_handler(NotActivatedError)
    async def handle_not_activated(request: Request, exc: NotActivatedError):
        return _envelope(request, 403, "Card not activated", exc.message, details=exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _envelope(request, 404, "Card not found", exc.message, details=exc.context)

    @app.exception_handler(DuplicateKeyError)
    async def handle_duplicate(request: Request, exc: DuplicateKeyError):
        return _envelope(request, 409, "Card ID already exists", exc.message, details=exc.context)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _envelope(
            request, 429, "Too many requests", exc.message,
            details={"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(StoreUnavailableError)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailableError):
        logger.error("Service unavailable: %s | Context: %s", exc.message, exc.context)
        return _envelope(
            request, 503, "Service unavailable", exc.message,
            headers={"Retry-After": "30"},
        )

    @app.exception_handler(UpstreamError)
    async def handle_upstream(request: Request, exc: UpstreamError):
        logger.error("Upstream error (%s): %s | Context: %s", exc.service, exc.message, exc.context)
        return _envelope(request, 500, "Server error", exc.message)

    @app.exception_handler(PapirError)
    async def handle_papir_error(request: Request, exc: PapirError):
        logger.error("Unhandled application error: %s | Context: %s", exc.message, exc.context)
        return _envelope(request, 500, "Server error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return _envelope(
            request, 500, "Internal server error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Papir API",
        description=(
            "Greeting card backend: card lifecycle, media upload, activation of "
            "printed cards and Stripe checkout."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Last added runs first: RequestID → RateLimit → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(cards.router)
    app.include_router(media.router)
    app.include_router(checkout.router)
    app.include_router(health.router)

    return app


app = create_app()

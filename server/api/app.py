"""FastAPI application setup."""
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from api.middleware.rate_limit import RateLimiter
from api.routes import assistant
from api.routes.health import router as health_router
from api.routes.records import categories_router, payees_router
from config.logging_config import setup_logging
from config.settings import settings
from core.dependencies import AppContainer, build_container, close_container
from core.errors import (
    AIServiceError,
    AssistantError,
    ConversationNotFoundError,
    InputValidationError,
    TurnCancelledError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # A container passed to create_app() belongs to the caller
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        app.state.container = build_container()
    logger.info("Application started")
    yield
    if owns_container:
        await close_container(app.state.container)
    logger.info("Application shut down")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_HTTP_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def _error(
    status_code: int,
    message: str,
    code: str,
    retryable: Optional[bool] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = {"error": message, "code": code}
    if retryable is not None:
        body["retryable"] = retryable
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "http_error")
        return _error(exc.status_code, str(exc.detail), code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
        return _error(400, message, InputValidationError.code)

    @app.exception_handler(InputValidationError)
    async def _input_validation(request: Request, exc: InputValidationError):
        return _error(400, str(exc), InputValidationError.code)

    @app.exception_handler(ConversationNotFoundError)
    async def _not_found(request: Request, exc: ConversationNotFoundError):
        return _error(404, str(exc), exc.code)

    @app.exception_handler(AIServiceError)
    async def _ai_service(request: Request, exc: AIServiceError):
        logger.error(f"AI service error on {request.url.path} (code={exc.code}): {exc}")
        return _error(
            503,
            "The AI service is temporarily unavailable. Please try again.",
            exc.code,
            retryable=exc.retryable,
        )

    @app.exception_handler(TurnCancelledError)
    async def _cancelled(request: Request, exc: TurnCancelledError):
        # Client Closed Request; nobody is listening any more
        return _error(499, str(exc), exc.code)

    @app.exception_handler(AssistantError)
    async def _assistant(request: Request, exc: AssistantError):
        logger.error(f"Assistant error on {request.url.path} (code={exc.code}): {exc}")
        return _error(500, "An internal error occurred.", "internal_error")

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return _error(500, "An internal error occurred.", "internal_error")


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Create and configure FastAPI application."""

    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Ledgerly Assistant API",
        description="Conversational assistant for managing payees and categories",
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # -----------------------------------------------------------------------
    # CORS: never combine allow_credentials=True with allow_origins=["*"]
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = RateLimiter(settings.RATE_LIMIT_PER_MINUTE)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        if request.url.path == "/health":
            return await call_next(request)

        key, authenticated = RateLimiter.key_for(
            request.headers.get("authorization", ""),
            request.client.host if request.client else None,
        )
        if not await limiter.allow(key, authenticated):
            return _error(429, "Rate limit exceeded. Try again later.", "rate_limited", retryable=True)
        return await call_next(request)

    register_exception_handlers(app)

    app.include_router(health_router, tags=["Health"])
    app.include_router(assistant.router, prefix="/assistant", tags=["Assistant"])
    app.include_router(payees_router, prefix="/payees", tags=["Payees"])
    app.include_router(categories_router, prefix="/categories", tags=["Categories"])

    logger.info("FastAPI application created")
    return app

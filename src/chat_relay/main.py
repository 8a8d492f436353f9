"""
Chat Relay - server-side proxy between a browser chat UI and an
OpenAI-compatible Chat Completions API.

The credential stays on the server; the browser only talks to this service.

Endpoints:
    Relay:
        - POST /api/agent   - Streaming relay (text/event-stream forwarded from upstream)
        - POST /api/copilot - Non-streaming relay ({"content": "..."})

    Tools:
        - POST /api/tools   - summarize, fetch, context.set, context.get, set.prefs

    Health:
        - GET /health       - Health check
        - GET /health/live  - Liveness check

Run with:
    uvicorn chat_relay.main:app --port 3000

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
import os
import sys
import time
import logging
from contextlib import asynccontextmanager
from typing import Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_relay import __version__
from chat_relay.config import get_settings
from chat_relay.routers import agent, copilot, tools
from chat_relay.services.context_store import close_context_store
from chat_relay.services.errors import (
    RelayError,
    error_response,
    internal_error,
    method_not_allowed_error,
)
from chat_relay.services.http_client import close_client

# Routes that accept POST only
POST_ONLY_PATHS = frozenset({"/api/agent", "/api/copilot", "/api/tools"})


# ============================================================================
# Logging Configuration
# ============================================================================

def configure_logging() -> None:
    """
    Configure structured logging with structlog.

    Sets up structlog with JSON output for production and pretty printing
    for development (when LOG_FORMAT=console).

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "json").lower()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level, logging.INFO),
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "console":
        renderers: list[structlog.types.Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Initialize logging before creating logger
configure_logging()
logger = structlog.get_logger("chat-relay")


# ============================================================================
# Application Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown events.

    Startup:
        - Logs whether the upstream credential is configured (never its value)

    Shutdown:
        - Closes the shared HTTP client
        - Closes the context store connection (Redis backend)

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    settings = get_settings()
    logger.info(
        "chat_relay.startup",
        upstream_url=settings.openai_api_url,
        has_api_key=bool(settings.openai_api_key),
        model=settings.model,
        stream=settings.relay_stream,
        mock=settings.use_agent_mock,
        context_store=settings.context_store_backend,
    )

    yield

    logger.info("chat_relay.shutdown")
    await close_client()
    await close_context_store()
    logger.info("chat_relay.shutdown.complete")


# ============================================================================
# Application Instance
# ============================================================================

app = FastAPI(
    title="Chat Relay",
    description="Streaming relay in front of an OpenAI-compatible Chat Completions API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Response-Time"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(RelayError)
async def relay_exception_handler(request: Request, exc: RelayError) -> JSONResponse:
    """
    Render any RelayError with the flat relay error format.

    Args:
        request: The incoming HTTP request
        exc: The relay error (status and diagnostics travel on the exception)

    Returns:
        JSONResponse with {"error", "status"?, "body"?, "details"?}

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    logger.warning(
        "chat_relay.relay_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        upstream_status=exc.upstream_status,
        message=exc.message,
    )
    return exc.to_response()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle malformed request bodies (bad JSON, invalid messages, unknown role).

    Returns:
        JSONResponse 400 with the first validation message

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = first_error.get("loc", [])
        param = ".".join(str(part) for part in loc if part != "body")
        message = first_error.get("msg", "Validation error")
        if param:
            message = f"Invalid body: {param}: {message}"
        else:
            message = f"Invalid body: {message}"
    else:
        message = "Bad Request"

    logger.warning("chat_relay.validation_error", path=request.url.path, message=message)

    return error_response(message, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(
        "chat_relay.http_error",
        path=request.url.path,
        status_code=exc.status_code,
        detail=str(exc.detail),
    )
    return error_response(str(exc.detail), status_code=exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled errors.

    Logs the full exception and returns a generic error without leaking
    internal details.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    logger.exception(
        "chat_relay.unhandled_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return internal_error()


# ============================================================================
# Middleware
# ============================================================================

@app.middleware("http")
async def enforce_post_only(request: Request, call_next: Callable):
    """
    Reject non-POST methods on the relay and tools routes with a JSON 405,
    and deny framing on every response.

    CORS preflight (OPTIONS) passes through to the CORS middleware.
    """
    if (
        request.url.path in POST_ONLY_PATHS
        and request.method not in ("POST", "OPTIONS")
    ):
        response = method_not_allowed_error()
    else:
        response = await call_next(request)

    response.headers["x-frame-options"] = "DENY"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable):
    """
    Middleware to log all requests with timing information.

    Logs request start and completion with duration for monitoring
    and debugging. For streamed responses the duration covers the time
    to the first byte, not the whole stream.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    request_id = request.headers.get("X-Request-ID", "-")
    start_time = time.perf_counter()

    # Bind request context for all logs in this request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        path=request.url.path,
        method=request.method,
    )

    logger.info("chat_relay.request.start")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000

    logger.info(
        "chat_relay.request.complete",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )

    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    return response


# ============================================================================
# Routers
# ============================================================================

app.include_router(agent.router, tags=["relay"])
app.include_router(copilot.router, tags=["relay"])
app.include_router(tools.router, tags=["tools"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """
    Health check endpoint for service monitoring.

    Returns:
        dict: Status information including service name and version
    """
    return {
        "status": "ok",
        "service": "chat-relay",
        "version": __version__,
    }


@app.get("/health/live")
async def liveness_check():
    return {"status": "alive"}

"""
api/main.py -- FastAPI application entry point for Gatehouse.

Exposes account invitation, email-verified registration, session sign-in /
sign-out, and the user listing over HTTP.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one log line per request with latency

Lifespan handles startup (database, stores, session store, mailer, workflow)
and shutdown (close session store, mailer, and engine) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import app_error_response
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import build_router as build_auth_router
from api.routes.v1.users import build_router as build_users_router
from auth.store import UserStore
from auth.verification import VerificationTokenStore
from auth.workflow import AuthWorkflow
from core.config import Settings, get_settings
from core.database import Database
from core.errors import AppError
from mail.mailer import Mailer, create_mailer
from sessions.manager import SessionManager
from sessions.store import SessionStore, create_session_store

VERSION = "0.1.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(
    app: FastAPI,
    settings: Settings,
    db: Database,
    session_store: SessionStore,
    mailer: Mailer,
) -> None:
    """Build the stores and workflow on top of the given backends and publish them on app.state.

    The real lifespan and the test fixtures both go through here, so routes
    always find the same set of attributes.
    """
    app.state.settings = settings
    app.state.db = db
    app.state.user_store = UserStore(db, settings.default_page_size, settings.max_page_size)
    app.state.token_store = VerificationTokenStore(db, settings.verification_token_ttl_seconds)
    app.state.session_store = session_store
    app.state.session_manager = SessionManager(session_store, settings.secret_key)
    app.state.mailer = mailer
    app.state.workflow = AuthWorkflow(
        app.state.user_store,
        app.state.token_store,
        app.state.session_manager,
        mailer,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database first -- both relational stores create their tables on it.
      2. Session store and mailer -- independent backends, chosen by settings.
      3. Workflow last -- composes everything above.
    """
    logger.info("Gatehouse API starting up")
    db = Database(settings.database_url)
    session_store = create_session_store(settings)
    mailer = create_mailer(settings)
    attach_services(app, settings, db, session_store, mailer)
    logger.info("Auth initialized (%d users)", app.state.user_store.count_users())

    yield

    session_store.close()
    close = getattr(mailer, "close", None)
    if close is not None:
        close()
    db.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Email-verified registration, session sign-in, and user listing.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST call is outermost.
# Register innermost first: CORS, then TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next for the latency field.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(build_auth_router(), prefix="/api/v1", tags=["Auth"])
app.include_router(build_users_router(), prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Typed application errors: status and code come from the AppError subclass."""
    return app_error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405 method)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No authentication.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and backend reachability."""
    components = {"app": "ok"}
    components["database"] = "ok" if request.app.state.db.ping() else "error"
    ping = getattr(request.app.state.session_store, "ping", None)
    if ping is not None:
        components["sessions"] = "ok" if ping() else "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)

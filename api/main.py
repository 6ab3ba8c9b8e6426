"""
api/main.py -- FastAPI application entry point for Forsetti.

Run with:  uvicorn asgi:app --reload

Middleware:
  TrustedHostMiddleware -- rejects requests with unexpected Host headers
  CORSMiddleware        -- adds CORS headers for allowed browser origins
  SessionMiddleware     -- OAuth state storage for authlib

Lifespan builds every collaborator once (stores, token service, notifier,
image store, OAuth registry) and parks it on app.state. Routes and guards
receive them from there; nothing is a module-level singleton.
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
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import HealthResponse
from api.responses import respond
from api.routes.v1.articles import router as articles_router
from api.routes.v1.auth import router as auth_router
from auth.oauth import oauth as oauth_client
from auth.store import UserStore
from auth.tokens import TokenService
from content.images import LoggingImageStore
from content.store import ContentStore
from core.config import get_settings
from core.errors import AppError
from notify.mailer import build_notifier

VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("forsetti.api")


# ---------------------------------------------------------------------------
# Collaborator wiring
# ---------------------------------------------------------------------------


def build_lookups(user_store: UserStore, content: ContentStore) -> dict:
    """Resource lookups used by resource_exists() and duplicate_guard().

    Path parameters arrive as strings; lookups convert them and raise
    ValueError for anything that is not a valid key.
    """
    return {
        "user": lambda value: user_store.get_by_id(int(value)),
        "article": content.get_article_by_slug,
        "comment": content.get_comment,
        "parent_comment": content.get_comment,
        "like": lambda comment, identity: content.has_liked(comment.id, identity.id),
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create collaborators on startup; dispose of the stores on shutdown."""
    logger.info("Forsetti API starting up")
    if _settings.database_url:
        app.state.user_store = UserStore(_settings.database_url)
        app.state.content = ContentStore(_settings.database_url)
    else:
        app.state.user_store = UserStore()
        app.state.content = ContentStore()
    app.state.tokens = TokenService.from_settings(_settings)
    app.state.lookups = build_lookups(app.state.user_store, app.state.content)
    app.state.notifier = build_notifier(_settings)
    app.state.images = LoggingImageStore()
    app.state.oauth = oauth_client
    logger.info("Notifier: %s", type(app.state.notifier).__name__)

    yield

    app.state.user_store.close()
    app.state.content.close()
    logger.info("Forsetti API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Forsetti API",
    description="Articles, threaded comments and likes for Authors Haven.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# authlib keeps the OAuth state value in the session between the
# authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)


# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(articles_router, prefix="/api/v1", tags=["Articles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same Envelope so API clients can parse every
# response with one schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an anticipated domain failure with its fixed status code."""
    return respond(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query and path parameter failures use the same 400 as body validation."""
    parts = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()]
    return respond(400, "; ".join(parts) or "Request validation failed.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return respond(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected faults.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return respond(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)

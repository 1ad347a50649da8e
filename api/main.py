"""
api/main.py -- FastAPI application entry point for Marquee.

Run with:      python main.py serve --port 4000
               uvicorn api.main:app --reload

Request pipeline (outermost to innermost):
  1. log_requests        -- method, path, status, latency, client
  2. vary_authorization  -- responses differ per bearer token
  3. rate_limit          -- global per-client token bucket (429)
  4. SlowAPIMiddleware   -- per-route limits from api.limiter (login)
  5. CORSMiddleware      -- trusted origins from Settings
  6. authenticate()      -- app-wide dependency: request.state.user
  7. require_*()         -- per-route permission dependencies
  8. route handler

Lifespan handles startup (engine, stores, token service, limiter, background
tasks) and shutdown (cancel tasks, dispose engine) symmetrically. Everything
a request needs is read from app.state, so tests swap collaborators by
replacing the lifespan rather than patching modules.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.encoder import Encoder, respond
from api.limiter import build_rate_limiter, client_key, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, SystemInfo
from api.routes.v1.movies import router as movies_router
from api.routes.v1.tokens import router as tokens_router
from api.routes.v1.users import router as users_router
from auth.dependencies import authenticate
from auth.mailer import Mailer
from auth.passwords import PasswordHasher
from auth.store import PermissionStore, TokenStore, UserStore
from auth.tokens import TokenService
from core.config import get_settings
from core.db import create_db_engine
from core.errors import AppError, BadRequestError, InvalidAuthenticationTokenError, RateLimitedError
from movies.store import MovieStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("marquee.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: float) -> None:
    """Evict idle rate limiter buckets every `interval` seconds.

    Runs independently of the request path. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and unwinds cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        app.state.rate_limiter.sweep()


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired tokens every hour. Store work runs off the event loop."""
    while True:
        await asyncio.sleep(60 * 60)
        try:
            removed = await asyncio.to_thread(app.state.token_service.purge_expired)
        except AppError:
            logger.exception("Expired token purge failed")
            continue
        if removed:
            logger.info("Purged %d expired token(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every collaborator, publish it on app.state, tear down on exit.

    Startup order matters: the engine first, stores on top of it, then the
    token service that composes the user/token stores and the hasher.
    """
    settings = get_settings()
    logger.info("Marquee API starting up (env=%s)", settings.env)

    engine = create_db_engine(settings.database_url, timeout=settings.db_timeout)
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.token_store = TokenStore(engine)
    app.state.permission_store = PermissionStore(engine)
    app.state.movie_store = MovieStore(engine)
    logger.info("Database initialized")

    app.state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.token_service = TokenService(
        app.state.user_store,
        app.state.token_store,
        settings.secret_key,
        app.state.hasher,
    )
    app.state.mailer = Mailer(sender=settings.mail_sender, region=settings.ses_region)
    app.state.encoder = Encoder()
    app.state.rate_limiter = build_rate_limiter()
    logger.info(
        "Rate limiter initialized (enabled=%s rps=%s burst=%s)",
        settings.limiter_enabled,
        settings.limiter_rps,
        settings.limiter_burst,
    )

    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.limiter_sweep_seconds))
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.sweep_task.cancel()
    app.state.purge_task.cancel()
    engine.dispose()
    logger.info("Marquee API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Marquee API",
    description="Movie catalog with user registration and bearer-token authentication.",
    version=VERSION,
    lifespan=lifespan,
    dependencies=[Depends(authenticate)],
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST one
# registered sees the request FIRST. Registration below is therefore
# innermost-first.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_trusted_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Expected-Version"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Admit the request only if the client's token bucket has a token left.

    With the limiter disabled allow() is a no-op that always admits.
    """
    rate_limiter = request.app.state.rate_limiter
    key = client_key(request)
    if not rate_limiter.allow(key):
        return _error_response(
            request,
            RateLimitedError(),
            headers={"Retry-After": str(rate_limiter.retry_after(key))},
        )
    return await call_next(request)


@app.middleware("http")
async def vary_authorization(request: Request, call_next):
    response = await call_next(request)
    response.headers.append("Vary", "Authorization")
    return response


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

app.include_router(users_router, prefix="/v1", tags=["Users"])
app.include_router(tokens_router, prefix="/v1", tags=["Tokens"])
app.include_router(movies_router, prefix="/v1", tags=["Movies"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves through _error_response, so clients see one
# {"error": {...}} shape whatever the status.
# ---------------------------------------------------------------------------

_fallback_encoder = Encoder()


def _error_response(
    request: Request,
    exc: AppError,
    headers: dict[str, str] | None = None,
) -> Response:
    """Render an AppError through the app's encoder.

    If the encoder itself fails there is nothing left to describe the
    failure with, so the client gets a bare 500.
    """
    payload = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            detail=exc.detail,
            fields=getattr(exc, "fields", None),
        )
    ).model_dump(exclude_none=True)
    encoder = getattr(request.app.state, "encoder", _fallback_encoder)
    try:
        return encoder.render(payload, status_code=exc.status_code, headers=headers)
    except Exception:
        logger.exception("Failed to encode %d error response", exc.status_code)
        return Response(status_code=500)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> Response:
    """Render every domain error. Invalid bearer tokens also get a WWW-Authenticate challenge."""
    headers = None
    if isinstance(exc, InvalidAuthenticationTokenError):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc.__cause__ or exc)
    return _error_response(request, exc, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Per-route slowapi limit hit (login). Same 429 envelope as the global bucket."""
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        request,
        RateLimitedError(detail=str(exc)),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Return 400 when the body is not JSON, has unknown keys, or carries wrongly typed values.

    Domain-rule failures are raised separately as core.errors.ValidationError (422).
    """
    return _error_response(request, BadRequestError(detail=str(exc.errors())))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Structured errors for routing failures (unknown path 404, wrong method 405)."""
    error = AppError(message=str(exc.detail).lower())
    error.status_code = exc.status_code
    error.code = f"http_{exc.status_code}"
    return _error_response(request, error, headers=getattr(exc, "headers", None))


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> Response:
    """A store failure is a 500. The SQL error is logged, never sent to the client."""
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return _error_response(request, AppError())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Anything unanticipated is a 500. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, AppError())


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public. Still behind the global limiter and authenticate(), so a bad
# bearer token is refused here like anywhere else.
# ---------------------------------------------------------------------------


@app.get("/v1/healthcheck", tags=["Health"])
async def healthcheck(request: Request) -> Response:
    """Return API liveness, environment, and version."""
    body = HealthResponse(system_info=SystemInfo(environment=get_settings().env, version=VERSION))
    return respond(request, body)

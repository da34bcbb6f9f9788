"""
api/main.py -- FastAPI application factory for TokenGate.

Run with:  uvicorn asgi:app --reload

create_app(settings) builds one fully wired app. Configuration flows in one
direction: Settings -> AuthConfig (frozen) -> each component's constructor.
Nothing below this module reads the environment.

Middleware stack (outermost to innermost; Starlette wraps the most recently
added middleware around the others):
  1. log_requests          -- method, path, status, latency, client
  2. security_headers      -- nosniff, frame denial, no-referrer on every response
  3. CORSMiddleware        -- allowed browser origins, credentials on for the cookie
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

The global per-IP limit (api.limiter) is a router-level dependency, not a
middleware.

Error boundary: every typed AppError, framework error, and unexpected
exception is converted to the ErrorResponse envelope here and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import build_api_limiter, enforce_api_limit, parse_api_limit
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.passwords import PasswordHasher
from auth.ratelimit import LOGIN, REGISTER, RateLimiter
from auth.service import SessionService
from auth.store import PrincipalStore
from auth.tokens import TokenCodec
from core.config import Settings
from core.errors import AppError, NotFoundError
from core.logging import configure_logging, install_fatal_handler

__version__ = "1.0.0"

logger = logging.getLogger("tokengate.api")

GENERIC_ERROR_MESSAGE = "Something went wrong."

# Response headers applied to every response unless a route already set them.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
        headers=headers,
    )


def create_app(settings: Settings, *, store: PrincipalStore | None = None) -> FastAPI:
    """Build the TokenGate ASGI app.

    Args:
        settings: Validated settings. A malformed or short SECRET_KEY has
                  already failed in Settings(); the token codec re-checks.
        store:    Optional pre-built PrincipalStore (tests inject in-memory
                  stores). When omitted the lifespan opens settings.database_url
                  and closes it on shutdown.
    """
    configure_logging(settings.log_level)
    config = settings.auth_config()
    debug = settings.debug

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Open the store on startup, close it on shutdown.

        An exception escaping any background task is fatal from here on.
        """
        logger.info("TokenGate API starting up")
        install_fatal_handler(asyncio.get_running_loop())
        owns_store = store is None
        principal_store = store or PrincipalStore(settings.database_url, settings.store_timeout_seconds)
        app.state.principal_store = principal_store
        app.state.session_service = SessionService(
            store=principal_store,
            hasher=app.state.password_hasher,
            codec=app.state.token_codec,
            config=config,
        )
        logger.info("Credential store initialized")

        yield

        if owns_store:
            principal_store.close()
        logger.info("TokenGate API shutdown complete")

    app = FastAPI(
        title="TokenGate API",
        description="Credential verification, bearer-token issuance and refresh for web applications.",
        version=__version__,
        lifespan=lifespan,
    )

    # Components that need no I/O are built eagerly so they exist even
    # before the lifespan runs.
    app.state.auth_config = config
    app.state.token_codec = TokenCodec(config.secret_key)
    app.state.password_hasher = PasswordHasher(config.bcrypt_rounds)
    app.state.rate_limiter = RateLimiter({LOGIN: config.login_rate_limit, REGISTER: config.register_rate_limit})
    # Storage and enable switch for the global per-IP limit.
    app.state.limiter = build_api_limiter(settings.api_rate_limit)
    app.state.api_rate_limit = parse_api_limit(settings.api_rate_limit)

    # ---------------------------------------------------------------------------
    # Middleware stack
    # ---------------------------------------------------------------------------

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
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
    # Routers
    # ---------------------------------------------------------------------------

    api_limit = [Depends(enforce_api_limit)]
    app.include_router(auth_router, prefix="/api", tags=["Auth"], dependencies=api_limit)

    @app.get("/api/health", tags=["Health"], dependencies=api_limit)
    def health(request: Request) -> HealthResponse:
        """Return liveness, version and credential store status. Not authenticated."""
        components = {"app": "ok", "database": "ok"}
        try:
            request.app.state.principal_store.ping()
        except Exception:
            logger.exception("Health check: credential store unreachable")
            components["database"] = "error"
        return HealthResponse(
            status="healthy" if components["database"] == "ok" else "degraded",
            version=__version__,
            components=components,
        )

    # ---------------------------------------------------------------------------
    # Exception handlers
    #
    # All handlers return the same ErrorResponse envelope so API clients can
    # parse errors uniformly without inspecting status codes to choose a schema.
    # ---------------------------------------------------------------------------

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """Translate a typed domain error into its wire response.

        Operational errors return their message verbatim. Anything else
        collapses to a generic message unless DEBUG is on. detail (the
        internal reason) is only ever returned in debug mode.
        """
        if exc.is_operational:
            message = exc.message
            if exc.status_code >= 500:
                logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
        else:
            logger.error(
                "Internal error on %s %s: %s (%s)",
                request.method,
                request.url.path,
                exc.message,
                exc.detail,
                exc_info=exc,
            )
            message = exc.message if debug else GENERIC_ERROR_MESSAGE
        headers = None
        if exc.status_code == 429:
            headers = {"Retry-After": str(getattr(exc, "retry_after", 60))}
        return _error_response(
            exc.status_code,
            exc.code,
            message,
            detail=exc.detail if debug else None,
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 when the request body fails schema validation.

        The pydantic error list echoes submitted values (passwords included),
        so it is only returned in debug mode.
        """
        return _error_response(
            400,
            "validation_error",
            "Request validation failed.",
            detail=str(exc.errors()) if debug else None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Framework-raised HTTP errors. Unmatched routes become NotFoundError."""
        if exc.status_code == 404:
            not_found = NotFoundError(f"Route {request.url.path} not found")
            return _error_response(not_found.status_code, not_found.code, not_found.message)
        return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler for unexpected server errors.

        The raw exception is logged server-side only. The client receives a
        generic message unless DEBUG is on.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error_response(
            500,
            "internal_error",
            GENERIC_ERROR_MESSAGE,
            detail=repr(exc) if debug else None,
        )

    return app

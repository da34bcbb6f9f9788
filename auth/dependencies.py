"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_principal() is the single enforcement point for protected routes.
It walks one request through four states:

  NoToken      -> no "Authorization: Bearer <token>" header        -> 401
  TokenPresent -> TokenCodec.verify() fails (malformed, bad
                  signature, expired, wrong token type)             -> 401
  TokenValid   -> principal missing or deactivated                  -> 401
  Authorized   -> sanitized Principal on request.state.principal

Every failure raises the same UnauthorizedError message. The specific reason
travels as detail and is logged at INFO -- it is never returned to clients in
production mode.

require_roles() wraps get_current_principal() and raises 403 unless the role
check passes. check_role() is a pure function so it can be reused outside
FastAPI (CLI, tests).

Layer rule: auth/dependencies.py may import from fastapi (for Request and
Depends) because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from fastapi import Depends, Request

from auth.models import Principal, Role
from auth.ratelimit import RateLimiter
from auth.service import SessionService
from auth.store import PrincipalStore
from auth.tokens import ACCESS, TokenCodec, TokenError
from core.errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger("tokengate.auth")

NOT_AUTHORIZED = "Not authorized to access this route."


# ---------------------------------------------------------------------------
# app.state accessors
# ---------------------------------------------------------------------------


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def client_key(request: Request) -> str:
    """Network origin used to key rate-limit counters."""
    return request.client.host if request.client else "unknown"


def extract_bearer_token(authorization_header: str | None) -> str | None:
    """Return the token from 'Bearer <token>', or None if absent or malformed."""
    if not authorization_header:
        return None
    parts = authorization_header.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def _deny(reason: str) -> UnauthorizedError:
    logger.info("Authorization denied: %s", reason)
    return UnauthorizedError(NOT_AUTHORIZED, detail=reason)


# ---------------------------------------------------------------------------
# Authorization middleware
# ---------------------------------------------------------------------------


def get_current_principal(request: Request) -> Principal:
    """Require a valid access token. Raises UnauthorizedError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...

    Declared as a plain def so FastAPI runs the store lookup on its threadpool.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise _deny("no bearer token")

    codec: TokenCodec = request.app.state.token_codec
    try:
        claims = codec.verify(token, expected_type=ACCESS)
    except TokenError as exc:
        raise _deny(f"{type(exc).__name__}: {exc}") from exc

    store: PrincipalStore = request.app.state.principal_store
    principal = store.get_by_id(claims.subject)
    if principal is None:
        raise _deny("principal no longer exists")
    if not principal.is_active:
        raise _deny("account deactivated")

    sanitized = principal.sanitized()
    request.state.principal = sanitized
    return sanitized


# ---------------------------------------------------------------------------
# Role checks
# ---------------------------------------------------------------------------


def check_role(role: Role | str, allowed_roles: Iterable[Role | str]) -> bool:
    """Pure capability check: is role one of allowed_roles?"""
    allowed = {Role(r) for r in allowed_roles}
    return Role(role) in allowed


def require_roles(*roles: Role | str) -> Callable[..., Principal]:
    """Build a dependency that admits only principals holding one of roles.

    Use as a FastAPI dependency:
        @router.patch("/admin-only")
        def route(principal: Principal = Depends(require_roles(Role.admin))): ...
    """
    allowed = frozenset(Role(r) for r in roles)
    if not allowed:
        raise ValueError("require_roles() needs at least one role")

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not check_role(principal.role, allowed):
            logger.info("Role check failed for %s (role=%s)", principal.id, principal.role.value)
            raise ForbiddenError("You do not have permission to perform this action")
        return principal

    return dependency

"""
api/routes/auth.py -- Authentication and session REST endpoints.

Routes (mounted under /api):
  POST  /api/auth/register      -- create account; 201 + refresh cookie
  POST  /api/auth/login         -- password login; 200 + refresh cookie
  POST  /api/auth/refresh       -- refresh cookie -> new access token
  POST  /api/auth/logout        -- clears refresh cookie (requires auth)
  GET   /api/auth/me            -- current principal (requires auth)
  PATCH /api/auth/me            -- update own profile/password (requires auth)
  PATCH /api/auth/users/{id}    -- set role / active flag (admin only)

Security:
  Login and register count against per-IP buckets in auth/ratelimit.py
  BEFORE credentials are looked at, so attempt N+1 is refused whether or not
  its password is right.
  The refresh token only ever travels in an HttpOnly, SameSite=Strict cookie
  scoped to /api/auth; it never appears in a response body.
  Cache-Control: no-store on every response that carries a token [M5].

Handlers that hash or hit the store are plain def: FastAPI runs them on its
threadpool, so bcrypt's deliberate slowness never stalls the event loop.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccessTokenResponse,
    LoginRequest,
    MessageResponse,
    PrincipalEnvelope,
    PrincipalPatch,
    PrincipalResponse,
    ProfileUpdate,
    RegisterRequest,
    SessionResponse,
)
from auth.dependencies import (
    client_key,
    get_current_principal,
    get_rate_limiter,
    get_session_service,
    require_roles,
)
from auth.models import Principal, Role
from auth.ratelimit import LOGIN, REGISTER
from auth.service import SessionResult
from core.config import AuthConfig

logger = logging.getLogger("tokengate.api")

# Auth policy:
# - POST  /auth/register:     public, rate-limited (register bucket)
# - POST  /auth/login:        public, rate-limited (login bucket)
# - POST  /auth/refresh:      public -- authenticated by the refresh cookie
# - POST  /auth/logout:       requires auth (get_current_principal)
# - GET   /auth/me:           requires auth (get_current_principal)
# - PATCH /auth/me:           requires auth (get_current_principal)
# - PATCH /auth/users/{id}:   requires admin (require_roles)
router = APIRouter()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response: JSONResponse, token: str, config: AuthConfig) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: page scripts cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the refresh token lifetime so both expire together.
    """
    response.set_cookie(
        config.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=config.secure_cookies,
        max_age=config.refresh_token_ttl,
        path=config.refresh_cookie_path,
    )


def clear_refresh_cookie(response: JSONResponse, config: AuthConfig) -> None:
    response.delete_cookie(
        config.refresh_cookie_name,
        path=config.refresh_cookie_path,
        httponly=True,
        samesite="strict",
        secure=config.secure_cookies,
    )


def _session_response(result: SessionResult, config: AuthConfig, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=SessionResponse(
            principal=PrincipalResponse.from_principal(result.principal),
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=config.access_token_ttl,
        ).model_dump(mode="json"),
    )
    set_refresh_cookie(resp, result.refresh_token, config)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a principal and open a session for it."""
    get_rate_limiter(request).enforce(client_key(request), REGISTER)
    result = get_session_service(request).register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _session_response(result, request.app.state.auth_config, 201)


@router.post("/auth/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the same 401 body, byte for byte,
    so the response cannot be used to enumerate accounts.
    """
    get_rate_limiter(request).enforce(client_key(request), LOGIN)
    result = get_session_service(request).login(body.email, body.password)
    return _session_response(result, request.app.state.auth_config, 200)


@router.post("/auth/refresh", response_model=AccessTokenResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token. The cookie is not rotated."""
    config: AuthConfig = request.app.state.auth_config
    token = request.cookies.get(config.refresh_cookie_name)
    access_token = get_session_service(request).refresh(token)
    resp = JSONResponse(
        content=AccessTokenResponse(
            access_token=access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=config.access_token_ttl,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_principal)) -> JSONResponse:
    """Clear the refresh cookie. Always 200 once the caller is authenticated.

    The access token presented here stays valid until it expires -- tokens are
    stateless and there is no denylist.
    """
    config: AuthConfig = request.app.state.auth_config
    resp = JSONResponse(content=MessageResponse(message="Logout successful").model_dump())
    try:
        get_session_service(request).logout(principal)
        clear_refresh_cookie(resp, config)
    except Exception:
        # Logout never fails outward; the fault still reaches the operators.
        logger.exception("Logout cleanup failed for %s", principal.id)
    return resp


@router.get("/auth/me", response_model=PrincipalEnvelope)
def me(principal: Principal = Depends(get_current_principal)) -> PrincipalEnvelope:
    """Return the currently authenticated principal."""
    return PrincipalEnvelope(principal=PrincipalResponse.from_principal(principal))


@router.patch("/auth/me", response_model=PrincipalEnvelope)
def update_me(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> PrincipalEnvelope:
    """Update the caller's own profile fields and, optionally, password."""
    updated = get_session_service(request).update_profile(
        principal,
        first_name=body.first_name,
        last_name=body.last_name,
        avatar=body.avatar,
        password=body.password,
    )
    return PrincipalEnvelope(principal=PrincipalResponse.from_principal(updated))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.patch("/auth/users/{principal_id}", response_model=PrincipalEnvelope)
def update_principal(
    request: Request,
    principal_id: str,
    body: PrincipalPatch,
    admin: Principal = Depends(require_roles(Role.admin)),
) -> PrincipalEnvelope:
    """Set a principal's role or active flag. Admin only.

    Deactivation takes effect on the target's very next request: the
    authorization dependency reloads the principal every time.
    """
    updated = get_session_service(request).set_status(
        admin,
        principal_id,
        is_active=body.is_active,
        role=body.role,
    )
    return PrincipalEnvelope(principal=PrincipalResponse.from_principal(updated))

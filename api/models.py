"""
API request and response models for TokenGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

PrincipalResponse has no password field at all -- the outward representation
of a Principal cannot carry the hash even by accident.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Principal, Role

# ---------------------------------------------------------------------------
# Request models
#
# Field rules here are transport-level only (presence, rough size). The
# domain rules (username pattern, email format, password length) live in
# SessionService so the CLI and the API enforce the same policy.
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    username: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255, alias="firstName")
    last_name: Optional[str] = Field(default=None, max_length=255, alias="lastName")


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Both fields default to "" so a missing field reaches SessionService.login()
    and is reported as "Please provide email and password" rather than a
    schema error.
    """

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/auth/me. Every field is optional."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(default=None, max_length=255, alias="firstName")
    last_name: Optional[str] = Field(default=None, max_length=255, alias="lastName")
    avatar: Optional[str] = Field(default=None, max_length=2048)
    password: Optional[str] = Field(default=None, max_length=255)


class PrincipalPatch(BaseModel):
    """Request body for PATCH /api/auth/users/{id} (admin only)."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """Outward view of a Principal."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    avatar: str = ""
    role: Role
    is_active: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            id=principal.id,
            username=principal.username,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            full_name=principal.full_name,
            avatar=principal.avatar,
            role=principal.role,
            is_active=principal.is_active,
            last_login=principal.last_login,
            created_at=principal.created_at,
            updated_at=principal.updated_at,
        )


class SessionResponse(BaseModel):
    """Body of register and login responses. The refresh token is cookie-only."""

    model_config = ConfigDict(frozen=True)

    principal: PrincipalResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AccessTokenResponse(BaseModel):
    """Body of POST /api/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class PrincipalEnvelope(BaseModel):
    """Body of GET/PATCH /api/auth/me and PATCH /api/auth/users/{id}."""

    model_config = ConfigDict(frozen=True)

    principal: PrincipalResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

"""
auth/service.py -- Session orchestration: register, login, refresh, logout, profile.

SessionService coordinates PrincipalStore, PasswordHasher and TokenCodec into
request-scoped operations. Every failure is raised as a typed AppError from
core.errors; api/main.py is the only place those become HTTP responses.

Security:
  [C1] Unknown email runs a dummy bcrypt comparison so timing does not reveal
       whether the account exists. Unknown email and wrong password raise the
       identical UnauthorizedError.
  Inactive accounts are rejected before the password is compared. This keeps
       the established ordering; the cost is that "Account is deactivated"
       confirms the email exists, which is accepted for this product.
  Refresh tokens are not rotated and there is no server-side revocation: a
       refresh token stays exchangeable until it expires or its principal is
       deactivated.

Methods are synchronous on purpose. Route handlers call them from FastAPI's
threadpool so bcrypt never blocks the event loop.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from auth.models import (
    EMAIL_RE,
    MAX_NAME_LENGTH,
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    USERNAME_RE,
    Principal,
    Role,
    normalize_email,
)
from auth.passwords import PasswordHasher
from auth.store import DuplicatePrincipalError, PrincipalStore
from auth.tokens import ACCESS, REFRESH, TokenCodec, TokenError
from core.config import AuthConfig
from core.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger("tokengate.auth")

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_DEACTIVATED = "Account is deactivated"


@dataclass(frozen=True)
class SessionResult:
    """Outcome of register/login. principal is already sanitized."""

    principal: Principal
    access_token: str
    refresh_token: str


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"Password cannot exceed {MAX_PASSWORD_LENGTH} bytes")


def _validate_name(label: str, value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError(f"{label} cannot exceed {MAX_NAME_LENGTH} characters")
    return value or None


class SessionService:
    """The login/register/refresh/logout control flow.

    Usage:
        service = SessionService(store=store, hasher=hasher, codec=codec, config=config)
        result = service.login("a@x.com", "Secret123!")
    """

    def __init__(
        self,
        *,
        store: PrincipalStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        config: AuthConfig,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._codec = codec
        self._config = config

    # ------------------------------------------------------------------
    # Token issuance
    # ------------------------------------------------------------------

    def _issue_pair(self, principal: Principal) -> tuple[str, str]:
        access = self._codec.issue(principal.id, self._config.access_token_ttl, ACCESS)
        refresh = self._codec.issue(principal.id, self._config.refresh_token_ttl, REFRESH)
        return access, refresh

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> SessionResult:
        """Create a principal and open a session for it.

        Raises:
            ValidationError: malformed username, email, password or names.
            ConflictError:   email or username already taken (email reported first).
        """
        username = (username or "").strip()
        email = normalize_email(email or "")
        if not USERNAME_RE.match(username):
            raise ValidationError(
                "Username must be 3-30 characters and contain only letters, numbers, and underscores"
            )
        if not EMAIL_RE.match(email):
            raise ValidationError("Please provide a valid email address")
        _validate_password(password or "")
        first_name = _validate_name("First name", first_name)
        last_name = _validate_name("Last name", last_name)

        if self._store.get_by_email(email) is not None:
            raise ConflictError("Email already in use")
        if self._store.get_by_username(username) is not None:
            raise ConflictError("Username already taken")

        principal = Principal(
            username=username,
            email=email,
            hashed_password=self._hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            principal.id = self._store.create(principal)
        except DuplicatePrincipalError as exc:
            message = "Email already in use" if exc.field == "email" else "Username already taken"
            raise ConflictError(message) from exc

        access, refresh = self._issue_pair(principal)
        logger.info("New principal registered: id=%s email=%s", principal.id, principal.email)
        stored = self._store.get_by_id(principal.id) or principal
        return SessionResult(principal=stored.sanitized(), access_token=access, refresh_token=refresh)

    def login(self, email: str, password: str) -> SessionResult:
        """Authenticate email + password and open a session.

        Raises:
            ValidationError:   email or password missing.
            UnauthorizedError: unknown email, wrong password (identical error),
                               or deactivated account.
        """
        if not email or not password:
            raise ValidationError("Please provide email and password")

        principal = self._store.get_by_email(normalize_email(email))
        if principal is None:
            # Equalize timing -- do NOT return before running bcrypt [C1].
            self._hasher.dummy_verify(password)
            raise UnauthorizedError(INVALID_CREDENTIALS, detail="unknown email")

        if not principal.is_active:
            raise UnauthorizedError(ACCOUNT_DEACTIVATED, detail=f"inactive principal {principal.id}")

        if not self._hasher.verify(password, principal.hashed_password):
            raise UnauthorizedError(INVALID_CREDENTIALS, detail=f"bad password for {principal.id}")

        try:
            self._store.record_login(principal.id)
        except SQLAlchemyError:
            # Best-effort: a failed timestamp write must not fail the login.
            logger.exception("Could not record last login for %s", principal.id)

        access, refresh = self._issue_pair(principal)
        logger.info("Principal logged in: id=%s", principal.id)
        return SessionResult(principal=principal.sanitized(), access_token=access, refresh_token=refresh)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> str:
        """Exchange a refresh token for exactly one new access token.

        The refresh token itself is not rotated.
        """
        if not refresh_token:
            raise UnauthorizedError("No refresh token provided")
        try:
            claims = self._codec.verify(refresh_token, expected_type=REFRESH)
        except TokenError as exc:
            raise UnauthorizedError(
                "Invalid or expired refresh token",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        principal = self._store.get_by_id(claims.subject)
        if principal is None:
            raise UnauthorizedError("Invalid or expired refresh token", detail="principal no longer exists")
        if not principal.is_active:
            raise UnauthorizedError(ACCOUNT_DEACTIVATED, detail=f"inactive principal {principal.id}")

        return self._codec.issue(principal.id, self._config.access_token_ttl, ACCESS)

    def logout(self, principal: Principal) -> None:
        """Record the logout. Outstanding access tokens stay valid until expiry."""
        logger.info("Principal logged out: id=%s", principal.id)

    # ------------------------------------------------------------------
    # Profile and administration
    # ------------------------------------------------------------------

    def get_profile(self, principal_id: str) -> Principal:
        principal = self._store.get_by_id(principal_id)
        if principal is None:
            raise NotFoundError("Principal not found")
        return principal.sanitized()

    def update_profile(
        self,
        principal: Principal,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        avatar: str | None = None,
        password: str | None = None,
    ) -> Principal:
        """Partial self-service profile update.

        The password is re-hashed only when it differs from the stored one;
        submitting the current password is a no-op for the credential.
        """
        current = self._store.get_by_id(principal.id)
        if current is None:
            raise NotFoundError("Principal not found")

        updates: dict = {}
        if first_name is not None:
            updates["first_name"] = _validate_name("First name", first_name)
        if last_name is not None:
            updates["last_name"] = _validate_name("Last name", last_name)
        if avatar is not None:
            updates["avatar"] = avatar.strip()
        if password is not None:
            _validate_password(password)
            if self._hasher.needs_update(password, current.hashed_password):
                updates["hashed_password"] = self._hasher.hash(password)
                logger.info("Password changed for %s", current.id)

        if updates:
            self._store.update(current.id, **updates)
        return self.get_profile(current.id)

    def set_status(
        self,
        actor: Principal,
        target_id: str,
        *,
        is_active: bool | None = None,
        role: Role | None = None,
    ) -> Principal:
        """Admin update of a principal's active flag or role.

        [M4] Prevents self-deactivation and deactivating (or demoting) the last
        active admin -- both would leave no recovery path without DB access.
        """
        target = self._store.get_by_id(target_id)
        if target is None:
            raise NotFoundError("Principal not found")

        updates: dict = {}
        removes_admin = target.role == Role.admin and target.is_active and (
            is_active is False or (role is not None and role != Role.admin)
        )
        if is_active is False and target.id == actor.id:
            raise ForbiddenError("You cannot deactivate your own account")
        if removes_admin and self._store.count_active_admins() <= 1:
            raise ConflictError("Cannot remove the last active admin account")
        if is_active is not None:
            updates["is_active"] = is_active
        if role is not None:
            updates["role"] = role
        if not updates:
            raise ValidationError("No fields to update")

        self._store.update(target.id, **updates)
        logger.info("Principal %s updated by %s: %s", target.id, actor.id, sorted(updates))
        return self.get_profile(target.id)

"""
auth/tokens.py -- JWT issue/verify for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (principal id), typ
       ("access" | "refresh"), iat, exp and a random jti. The jti makes every
       token unique even when two are issued for the same principal inside the
       same second.

  Verification is a pure function of token + secret + clock. No store is
       consulted, so a token cannot be revoked before it expires.

  Algorithm pinning: the header alg must equal the configured algorithm before
       the signature is even checked, and jwt.decode() is called with a single
       allowed algorithm. "none" and RS/HS confusion are rejected.

  Expiry is checked here against an injectable clock rather than inside
       python-jose, which always reads the wall clock. That keeps the
       T-epsilon / T+epsilon boundary testable.

  iat and exp are whole-second NumericDates, truncated toward zero. A token
       issued at x.9s therefore expires up to one second before issue + ttl;
       lifetimes are never extended by rounding.

  The secret is never logged and is excluded from repr().

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import MIN_SECRET_LENGTH

logger = logging.getLogger("tokengate.auth")

ACCESS = "access"
REFRESH = "refresh"
_TOKEN_TYPES = (ACCESS, REFRESH)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token verification failures. Never shown to clients."""


class MalformedToken(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class ExpiredToken(TokenError):
    pass


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    expiry: datetime
    token_type: str
    issued_at: datetime | None = None
    token_id: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Signs and verifies compact, time-bounded tokens.

    Usage:
        codec = TokenCodec(config.secret_key)
        token = codec.issue(principal.id, config.access_token_ttl)
        claims = codec.verify(token, expected_type="access")
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if len(secret.encode("utf-8")) < MIN_SECRET_LENGTH:
            raise ValueError(f"Signing secret must be at least {MIN_SECRET_LENGTH} bytes.")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def __repr__(self) -> str:
        return f"TokenCodec(algorithm={self._algorithm!r})"

    def issue(self, subject: str, ttl: int | timedelta, token_type: str = ACCESS) -> str:
        """Encode a signed JWT for subject that expires ttl from now.

        Args:
            subject:    Principal id, stored as the sub claim.
            ttl:        Lifetime in seconds or as a timedelta.
            token_type: "access" or "refresh", stored as the typ claim.
        """
        if token_type not in _TOKEN_TYPES:
            raise ValueError(f"Unknown token type {token_type!r}")
        lifetime = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        now = self._clock()
        payload = {
            "sub": str(subject),
            "typ": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str, expected_type: str | None = None) -> TokenClaims:
        """Verify token and return its claims.

        Raises:
            MalformedToken:   structurally invalid, missing/ill-typed claims,
                              or a typ other than expected_type.
            InvalidSignature: wrong algorithm or signature mismatch.
            ExpiredToken:     the clock is at or past exp.
        """
        if not isinstance(token, str) or not token:
            raise MalformedToken("empty token")
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken(str(exc)) from exc

        if header.get("alg") != self._algorithm:
            raise InvalidSignature(f"unexpected algorithm {header.get('alg')!r}")

        try:
            # exp is checked below against our own clock.
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        subject = payload.get("sub")
        exp = payload.get("exp")
        token_type = payload.get("typ")
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("missing sub claim")
        if not isinstance(exp, int) or isinstance(exp, bool):
            raise MalformedToken("missing or non-integer exp claim")
        if token_type not in _TOKEN_TYPES:
            raise MalformedToken("missing or unknown typ claim")
        if expected_type is not None and token_type != expected_type:
            raise MalformedToken(f"expected {expected_type} token, got {token_type}")

        expiry = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self._clock() >= expiry:
            raise ExpiredToken("token expired")

        iat = payload.get("iat")
        return TokenClaims(
            subject=subject,
            expiry=expiry,
            token_type=token_type,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, int) else None,
            token_id=payload.get("jti"),
        )

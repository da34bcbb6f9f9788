"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly (no passlib wrapper): passlib's wrap-bug detection
feeds bcrypt 4.x a >72-byte password, which it now rejects outright.

The cost factor is fixed per process (BCRYPT_ROUNDS, minimum 10). checkpw
compares digests in constant time, so verify() leaks nothing about how close
a guess was.

The dummy digest enables timing equalization: SessionService.login() calls
dummy_verify() when the email is unknown, so response time does not reveal
whether an account exists [C1].
"""

from __future__ import annotations

import logging

import bcrypt

from core.config import MIN_BCRYPT_ROUNDS
from core.errors import InternalError

logger = logging.getLogger("tokengate.auth")


class PasswordHasher:
    """Salted, cost-parameterized hashing and verification of plaintext secrets."""

    def __init__(self, rounds: int = 12) -> None:
        if rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"bcrypt rounds must be at least {MIN_BCRYPT_ROUNDS}, got {rounds}")
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("tokengate_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext.

        Raises InternalError if bcrypt fails. Callers must treat that as fatal
        to the write -- there is no fallback that stores the plaintext.
        """
        try:
            digest = bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise InternalError("Password hashing failed.") from exc
        return digest.decode("utf-8")

    def verify(self, plaintext: str, digest: str | None) -> bool:
        """Return True if plaintext matches digest. Malformed digests return False."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def needs_update(self, plaintext: str, digest: str | None) -> bool:
        """True when storing plaintext would change the credential.

        Lets profile updates skip re-hashing (and the write) when the submitted
        password is the one already on file.
        """
        return not self.verify(plaintext, digest)

    def dummy_verify(self, plaintext: str) -> None:
        """Burn one bcrypt comparison against a throwaway digest [C1]."""
        self.verify(plaintext, self._dummy_hash)

"""
auth/models.py -- Domain dataclasses and field rules for authentication entities.

Pattern: Data class (pure data container). Stores and services do the work;
the only behaviour here is derived display data and sanitization.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,30}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72  # bcrypt truncates beyond 72 bytes
MAX_NAME_LENGTH = 50


class Role(str, Enum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


@dataclass
class Principal:
    """The authenticated user record.

    hashed_password is only ever written through PasswordHasher and is None on
    sanitized copies. Anything that leaves the process (API responses, request
    state handed to route handlers) must go through sanitized().

    Timestamps are ISO 8601 UTC strings, matching how the store persists them.
    """

    username: str
    email: str
    id: str | None = None
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str = ""
    role: Role = Role.user
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.username

    def sanitized(self) -> Principal:
        """Return a copy that is safe to hand to route handlers."""
        return replace(self, hashed_password=None)


def normalize_email(email: str) -> str:
    return email.strip().lower()

"""
core/errors.py -- Typed error taxonomy shared by every layer.

Domain code raises these; exactly one boundary (api/main.py exception
handlers) turns them into HTTP responses. Nothing below the API layer builds
HTTPException or touches status codes directly.

is_operational marks anticipated, user-facing failures. Their message is safe
to return verbatim. Non-operational errors (programming faults) collapse to a
generic message outside debug mode while the full detail is logged.

Layer rule: core/ is the kernel. No imports from api/, auth/, or client/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for every error that crosses the API boundary."""

    status_code: int = 500
    code: str = "internal_error"
    is_operational: bool = True

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        # detail is for server logs and debug responses only.
        self.detail = detail


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class UnauthorizedError(AppError):
    """401 for bad credentials, bad tokens, deactivated or missing principals.

    Deliberately coarse: callers pass the specific reason as detail, which is
    logged but never returned outside debug mode.
    """

    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class RateLimitedError(AppError):
    """429 with retry-after semantics. retry_after is whole seconds."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str = "Too many requests.", *, retry_after: int = 60, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.retry_after = max(1, int(retry_after))


class InternalError(AppError):
    status_code = 500
    code = "internal_error"
    is_operational = False

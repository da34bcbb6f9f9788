"""
api/limiter.py -- Global per-IP API rate limit (slowapi).

This is the coarse "every route" limit. The tighter per-endpoint quotas for
login and register live in auth/ratelimit.py and are enforced inside the route
handlers, so they count attempts regardless of credential correctness.

The limit is enforced by enforce_api_limit(), attached as a router-level
dependency in api/main.py. Router dependencies resolve before the route's own
dependencies, so unauthenticated requests to protected routes are counted too.
It hits the slowapi Limiter's backend directly instead of relying on
SlowAPIMiddleware, whose route lookup does not see routes mounted through
include_router on current FastAPI releases.

The limiter is built per app (not at module import) so each app instance --
and each test client -- gets its own in-memory counter store. It is kept on
app.state.limiter, where slowapi expects it.
"""

import time

from fastapi import Request
from limits import RateLimitItem, parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.errors import RateLimitedError

API_BUCKET = "api"


def build_api_limiter(default_limit: str) -> Limiter:
    return Limiter(key_func=get_remote_address, default_limits=[default_limit], storage_uri="memory://")


def parse_api_limit(default_limit: str) -> RateLimitItem:
    return parse(default_limit)


def enforce_api_limit(request: Request) -> None:
    """Count one request against the global limit; raise RateLimitedError on deny."""
    limiter: Limiter = request.app.state.limiter
    if not limiter.enabled:
        return
    item: RateLimitItem = request.app.state.api_rate_limit
    key = get_remote_address(request)
    if limiter.limiter.hit(item, API_BUCKET, key):
        return
    reset_at, _remaining = limiter.limiter.get_window_stats(item, API_BUCKET, key)
    raise RateLimitedError(
        retry_after=int(reset_at - time.time()) + 1,
        detail=f"bucket={API_BUCKET}",
    )

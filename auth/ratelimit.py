"""
auth/ratelimit.py -- Per-bucket, per-client attempt counters for sensitive endpoints.

Built on the `limits` package (the same engine slowapi uses for the global API
limit in api/limiter.py). Each bucket ("login", "register") has its own quota
in the limits rate-string grammar, e.g. "5/15 minutes".

Counters live in limits' in-process memory storage. Increments are atomic per
key, so concurrent requests from one client cannot both slip under the quota.
They are approximate and vanish on restart -- the goal is abuse dampening,
not hard quota enforcement.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from core.errors import RateLimitedError

LOGIN = "login"
REGISTER = "register"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Fixed-window attempt counter keyed by (bucket, client key).

    Usage:
        limiter = RateLimiter({"login": "5/15 minutes"})
        decision = limiter.check("203.0.113.7", "login")
        limiter.enforce("203.0.113.7", "login")   # raises RateLimitedError on deny
    """

    def __init__(
        self,
        quotas: Mapping[str, str],
        storage_uri: str = "memory://",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._quotas = {bucket: parse(quota) for bucket, quota in quotas.items()}
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._clock = clock

    @property
    def buckets(self) -> tuple[str, ...]:
        return tuple(self._quotas)

    def check(self, client_key: str, bucket: str) -> RateLimitDecision:
        """Count one attempt and report whether it is within quota."""
        item = self._quotas.get(bucket)
        if item is None:
            raise ValueError(f"Unknown rate-limit bucket {bucket!r}")
        allowed = self._strategy.hit(item, bucket, client_key)
        reset_at, remaining = self._strategy.get_window_stats(item, bucket, client_key)
        retry_after = 0 if allowed else max(1, int(reset_at - self._clock()) + 1)
        return RateLimitDecision(
            allowed=allowed,
            limit=item.amount,
            remaining=max(0, remaining),
            retry_after=retry_after,
        )

    def enforce(self, client_key: str, bucket: str) -> RateLimitDecision:
        decision = self.check(client_key, bucket)
        if not decision.allowed:
            raise RateLimitedError(
                "Too many attempts. Please try again later.",
                retry_after=decision.retry_after,
                detail=f"bucket={bucket}",
            )
        return decision

    def reset(self) -> None:
        """Drop every counter (operator tooling and tests)."""
        self._storage.reset()

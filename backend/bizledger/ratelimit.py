# backend/bizledger/ratelimit.py
"""
In-process rate limiting keyed by client IP.

Two independent policies exist:
- general: every request (default 100 per 60 seconds)
- auth:    authentication traffic (default 5 per 15 minutes)

Each policy keeps its own keyspace of fixed-window buckets. Counters live
in memory only, so a process restart resets them.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from fastapi import Request

from .errors import RateLimited

logger = logging.getLogger(__name__)

GENERAL = "general"
AUTH = "auth"

TRUST_FORWARDED_FOR = os.getenv("TRUST_FORWARDED_FOR", "false").lower() in {"1", "true", "yes", "on"}

_SHARD_COUNT = 64
_PRUNE_EVERY = 1000


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    points: int
    duration_seconds: float
    message: str


@dataclass
class _Bucket:
    consumed: int
    resets_at: float


def default_policies() -> Dict[str, RateLimitPolicy]:
    return {
        GENERAL: RateLimitPolicy(
            name=GENERAL,
            points=int(os.getenv("RATE_LIMIT_GENERAL_POINTS", "100")),
            duration_seconds=float(os.getenv("RATE_LIMIT_GENERAL_WINDOW", "60")),
            message="Too many requests, please try again later.",
        ),
        AUTH: RateLimitPolicy(
            name=AUTH,
            points=int(os.getenv("RATE_LIMIT_AUTH_POINTS", "5")),
            duration_seconds=float(os.getenv("RATE_LIMIT_AUTH_WINDOW", str(15 * 60))),
            message="Too many authentication attempts, please try again later.",
        ),
    }


class _Shard:
    __slots__ = ("lock", "buckets")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.buckets: Dict[str, _Bucket] = {}


class RateLimiter:
    """
    Fixed-window counters, one keyspace per policy.

    Buckets are spread over a fixed set of shards, each with its own lock,
    so two consumptions for the same key never lose an update while
    unrelated keys do not contend on a single global lock.
    """

    def __init__(
        self,
        policies: Optional[Iterable[RateLimitPolicy]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        chosen = list(policies) if policies is not None else list(default_policies().values())
        self._policies: Dict[str, RateLimitPolicy] = {p.name: p for p in chosen}
        self._clock = clock
        self._shards: Dict[str, list[_Shard]] = {
            name: [_Shard() for _ in range(_SHARD_COUNT)] for name in self._policies
        }
        self._calls = 0

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise ValueError(f"Unknown rate limit policy {name!r}") from None

    def _shard_for(self, policy_name: str, key: str) -> _Shard:
        index = zlib.crc32(key.encode("utf-8")) % _SHARD_COUNT
        return self._shards[policy_name][index]

    def consume(self, key: str, policy_name: str = GENERAL) -> int:
        """
        Take one point from `key`'s bucket under `policy_name`.

        Returns the points left in the current window. Raises RateLimited
        once the window's budget is exhausted.
        """
        policy = self.policy(policy_name)
        shard = self._shard_for(policy_name, key)
        now = self._clock()

        with shard.lock:
            bucket = shard.buckets.get(key)
            if bucket is None or now >= bucket.resets_at:
                bucket = _Bucket(consumed=0, resets_at=now + policy.duration_seconds)
                shard.buckets[key] = bucket

            if bucket.consumed >= policy.points:
                retry_after = bucket.resets_at - now
                rejected = True
            else:
                bucket.consumed += 1
                remaining = policy.points - bucket.consumed
                rejected = False

        self._maybe_prune(now)

        if rejected:
            logger.info(
                "rate limit exceeded",
                extra={"policy": policy.name, "key": key, "retry_after": round(retry_after, 1)},
            )
            raise RateLimited(policy.message, retry_after_seconds=int(retry_after) + 1)
        return remaining

    def _maybe_prune(self, now: float) -> None:
        # Unsynchronised counter: an occasional skipped or doubled prune is harmless.
        self._calls += 1
        if self._calls % _PRUNE_EVERY:
            return
        for shards in self._shards.values():
            for shard in shards:
                with shard.lock:
                    expired = [k for k, b in shard.buckets.items() if now >= b.resets_at]
                    for k in expired:
                        del shard.buckets[k]


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    if TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(policy_name: str) -> Callable[[Request], None]:
    """
    Dependency factory that consumes one point of `policy_name` for the
    caller's IP before anything else in the request runs.

    Usage:
        app = FastAPI(dependencies=[Depends(rate_limit(GENERAL))])

        @router.get("/session", dependencies=[Depends(rate_limit(AUTH))])
        def session(...): ...
    """

    def dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        limiter.consume(client_ip(request), policy_name)

    return dependency

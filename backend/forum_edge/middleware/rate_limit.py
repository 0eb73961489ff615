"""
Forum Edge — Sliding Window Rate Limiter
==========================================

What:  Per-client sliding window log limiter used by the edge gate.
Why:   Protects auth endpoints from credential stuffing and the API and
       page routes from scraping and accidental request storms.
How:   Keeps, per client identity, the list of admitted request timestamps
       (milliseconds) and counts the ones inside the active window.
Who:   Called once per gated request by EdgeGateMiddleware.

Algorithm: Sliding Window Log
    1. window_start = now - interval
    2. Keep stored timestamps > window_start (lazy expiry, no background task)
    3. limited = kept >= max
    4. Admitted requests append `now` and persist the kept list;
       limited requests persist nothing, so hammering a limited endpoint
       does not push the client's recovery further out.

Concurrency:
    No lock is taken. Two concurrent requests from the same client can both
    observe the same count and both be admitted. This is a soft limiter.

Memory:
    RateWindowStore is bounded: least recently used client identities are
    evicted past `max_clients`, and idle identities are swept periodically.
    An evicted client simply starts over with an empty window.
"""

import logging
import math
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional

from starlette.responses import JSONResponse

from forum_edge.schemas.edge import RateLimitErrorResponse

logger = logging.getLogger(__name__)


class RateLimitConfig(NamedTuple):
    """Window length and request budget for one class of routes."""

    interval_ms: int
    max_requests: int


class RateLimitResult(NamedTuple):
    """Outcome of one limiter check. Never stored."""

    limited: bool
    remaining: int
    reset_at_ms: int

    @property
    def reset_at_iso(self) -> str:
        return format_timestamp_ms(self.reset_at_ms)


# ── Route Classes ─────────────────────────────────────────────────────────
# Auth endpoints: strict (credential stuffing, sign-up abuse)
# API endpoints: moderate
# Pages: very permissive, only meant to stop request floods
RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "AUTH_API": RateLimitConfig(interval_ms=15 * 60 * 1000, max_requests=10),
    "API_GENERAL": RateLimitConfig(interval_ms=60 * 1000, max_requests=100),
    "PAGE": RateLimitConfig(interval_ms=60 * 1000, max_requests=500),
}


def format_timestamp_ms(timestamp_ms: int) -> str:
    """Milliseconds since epoch → ISO-8601 UTC with millisecond precision."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_client_id(ip: str, user_agent: Optional[str]) -> str:
    return f"{ip}:{user_agent or 'unknown'}"


def get_rate_limit_config(pathname: str) -> RateLimitConfig:
    """
    Select the route class for a request path.

    Priority order matters: /api/auth/* is also under /api/.
    """
    if pathname.startswith("/api/auth/"):
        return RATE_LIMITS["AUTH_API"]
    if pathname.startswith("/api/"):
        return RATE_LIMITS["API_GENERAL"]
    return RATE_LIMITS["PAGE"]


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateWindowStore:
    """
    Client identity → admitted request timestamps.

    Bounded in two ways:
        - LRU: past `max_clients` identities, the least recently admitted
          one is dropped.
        - Sweep: every `sweep_interval` writes, identities whose newest
          timestamp is older than `retention_ms` are dropped.

    `retention_ms` must be at least the longest configured interval,
    otherwise a sweep could forget requests that still count.
    """

    def __init__(
        self,
        max_clients: int = 10_000,
        sweep_interval: int = 1_000,
        retention_ms: Optional[int] = None,
    ):
        self.max_clients = max_clients
        self.sweep_interval = sweep_interval
        self.retention_ms = retention_ms or max(c.interval_ms for c in RATE_LIMITS.values())
        self._windows: "OrderedDict[str, List[int]]" = OrderedDict()
        self._writes = 0

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._windows

    def get(self, client_id: str) -> List[int]:
        # Copy so callers filtering the list cannot corrupt stored state
        return list(self._windows.get(client_id, ()))

    def set(self, client_id: str, timestamps: List[int], now_ms: int) -> None:
        self._windows[client_id] = timestamps
        self._windows.move_to_end(client_id)

        while len(self._windows) > self.max_clients:
            evicted, _ = self._windows.popitem(last=False)
            logger.debug("Evicted rate window for %s (store full)", evicted)

        self._writes += 1
        if self._writes % self.sweep_interval == 0:
            self.sweep(now_ms)

    def sweep(self, now_ms: int) -> int:
        """
        Remove identities with no request inside the retention horizon.

        Returns:
            Number of identities removed.
        """
        horizon = now_ms - self.retention_ms
        idle = [
            client_id for client_id, timestamps in self._windows.items()
            if not timestamps or timestamps[-1] <= horizon
        ]
        for client_id in idle:
            del self._windows[client_id]

        if idle:
            logger.debug("Swept %d idle rate windows", len(idle))
        return len(idle)


class SlidingWindowRateLimiter:
    """
    Admit/reject decisions over a RateWindowStore.

    Args:
        store: Window storage; a fresh bounded store when omitted.
        clock: Returns "now" in milliseconds since epoch. Injected by tests.
    """

    def __init__(
        self,
        store: Optional[RateWindowStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store if store is not None else RateWindowStore()
        self._clock = clock or _now_ms

    def is_rate_limited(self, client_id: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        window_start = now - config.interval_ms

        recent = [ts for ts in self.store.get(client_id) if ts > window_start]
        limited = len(recent) >= config.max_requests
        remaining = max(0, config.max_requests - len(recent) - 1)

        if not limited:
            recent.append(now)
            self.store.set(client_id, recent, now)

        return RateLimitResult(
            limited=limited,
            remaining=remaining,
            reset_at_ms=now + config.interval_ms,
        )


def get_rate_limit_headers(config: RateLimitConfig, result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at_iso,
    }


def create_rate_limit_response(result: RateLimitResult, config: RateLimitConfig) -> JSONResponse:
    """
    Build the 429 answer for a rejected request.

    Body: {"error": "Too Many Requests", "message": ..., "resetAt": ISO-8601}
    Retry-After is resetAt - now in whole seconds, i.e. the window length.
    """
    retry_after = max(1, math.ceil(config.interval_ms / 1000))

    return JSONResponse(
        status_code=429,
        content=RateLimitErrorResponse(
            message="Rate limit exceeded",
            resetAt=result.reset_at_iso,
        ).model_dump(),
        headers={"Retry-After": str(retry_after)},
    )

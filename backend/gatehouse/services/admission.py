"""
Gatehouse — Admission Limiter
===============================

What:  Per-client fixed-window rate limiting with a compiled-in exemption
       policy for operational endpoints.
How:   Each non-exempt request charges one hit against its client key in the
       CounterStore (atomic check-and-increment). The decision carries the
       RateLimit-* headers the adapter must attach, and on rejection the
       Retry-After hint.
Who:   Built once by the application factory; called by RateLimitMiddleware.
When:  After the origin policy admits the request, before the handler runs.
       Hits are charged on entry and never refunded, so abandoning requests
       does not buy extra budget.

Memory bound:
    Expired entries are not removed on the hot path; a window is simply
    reopened when a key comes back after reset. A sweep of expired entries
    runs at most once per window duration, gated on the monotonic clock,
    which keeps the store at roughly "keys active within one window".
"""

import logging
import math
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Pattern, Tuple

from gatehouse.config import DEFAULT_RATE_LIMIT, DEFAULT_RATE_WINDOW_MS
from gatehouse.services.counter_store import CounterStore, InMemoryCounterStore

logger = logging.getLogger(__name__)

REJECTED_BODY = "Too many requests, please try again later."
UNKNOWN_CLIENT = "unknown"

# Health probes, metrics scrapes and API docs are never throttled
EXEMPT_PATH_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^(/api(/v\d+)?)?/health(/.*)?$"),
    re.compile(r"^(/api(/v\d+)?)?/metrics(/.*)?$"),
    re.compile(r"^(/api)?/docs(/.*)?$"),
    re.compile(r"^(/api)?/redoc(/.*)?$"),
    re.compile(r"^(/api)?/openapi\.json$"),
)


def is_exempt_path(path: str) -> bool:
    return any(pattern.match(path) for pattern in EXEMPT_PATH_PATTERNS)


def resolve_client_key(
    forwarded_for: Optional[str],
    peer_host: Optional[str],
    trusted_hops: int = 0,
) -> str:
    """
    Identify the client a request is charged to.

    With no trusted proxies (the default) X-Forwarded-For is ignored and the
    direct peer is the client. With `trusted_hops` proxies in front of the
    service, the entry that many positions from the right of X-Forwarded-For
    is the one our nearest trusted proxy observed. Entries further left are
    client-controlled and are ignored. Falls back to the peer address, then
    to "unknown".
    """
    if forwarded_for and trusted_hops > 0:
        hops = [part.strip() for part in forwarded_for.split(",") if part.strip()]
        if hops:
            index = max(len(hops) - trusted_hops, 0)
            return hops[index]
    if peer_host:
        return peer_host
    return UNKNOWN_CLIENT


@dataclass(frozen=True)
class AdmissionDecision:
    admitted: bool
    exempt: bool = False
    headers: Dict[str, str] = field(default_factory=dict)
    retry_after: Optional[int] = None


class AdmissionLimiter:
    """
    Fixed-window admission decisions over a CounterStore.

    Attributes:
        limit:      Requests admitted per key per window.
        window_ms:  Window duration in milliseconds.
        store:      Counter storage (in-memory by default).
        clock:      Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        limit: int = DEFAULT_RATE_LIMIT,
        window_ms: int = DEFAULT_RATE_WINDOW_MS,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not isinstance(limit, int) or limit <= 0:
            logger.warning("Invalid rate limit %r; using default %d", limit, DEFAULT_RATE_LIMIT)
            limit = DEFAULT_RATE_LIMIT
        if not isinstance(window_ms, int) or window_ms <= 0:
            logger.warning(
                "Invalid rate window %r; using default %dms", window_ms, DEFAULT_RATE_WINDOW_MS
            )
            window_ms = DEFAULT_RATE_WINDOW_MS

        self.limit = limit
        self.window_ms = window_ms
        self.store = store if store is not None else InMemoryCounterStore()
        self.clock = clock

        self._sweep_lock = threading.Lock()
        self._next_sweep_at: Optional[float] = None

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0

    def check(self, client_key: str, path: str) -> AdmissionDecision:
        if is_exempt_path(path):
            return AdmissionDecision(admitted=True, exempt=True)

        now = self.clock()
        try:
            self._maybe_sweep(now)
            result = self.store.hit(client_key, self.limit, self.window_seconds, now)
        except Exception:
            # Fail open, uncounted
            logger.exception("Counter store failure for client %s; admitting request", client_key)
            return AdmissionDecision(admitted=True, headers=self._uncharged_headers())

        reset_seconds = max(math.ceil(result.reset_at - now), 0)
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(max(self.limit - result.count, 0)),
            "RateLimit-Reset": str(reset_seconds),
        }

        if result.admitted:
            return AdmissionDecision(admitted=True, headers=headers)

        headers["Retry-After"] = str(reset_seconds)
        logger.warning(
            "Rate limit exceeded for client %s: %d requests in %dms window",
            client_key,
            result.count,
            self.window_ms,
            extra={"client_key": client_key, "path": path, "retry_after": reset_seconds},
        )
        return AdmissionDecision(admitted=False, headers=headers, retry_after=reset_seconds)

    def _uncharged_headers(self) -> Dict[str, str]:
        # Nothing was counted: report the full budget and a whole window
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.limit),
            "RateLimit-Reset": str(math.ceil(self.window_seconds)),
        }

    def _maybe_sweep(self, now: float) -> None:
        """Sweep expired entries at most once per window."""
        if self._next_sweep_at is None:
            self._next_sweep_at = now + self.window_seconds
            return
        if now < self._next_sweep_at:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if now < self._next_sweep_at:
                return
            self._next_sweep_at = now + self.window_seconds
            removed = self.store.sweep(now)
            if removed:
                logger.debug("Swept %d expired rate-limit entries", removed)
        finally:
            self._sweep_lock.release()

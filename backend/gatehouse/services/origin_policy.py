"""
Gatehouse — Origin Policy Engine
==================================

What:  Decides, from a request's declared Origin, whether a cross-origin
       caller is allowed, and supplies the CORS response headers it needs.
How:   Exact string membership against a frozen set of normalized origins.
       Normalization strips one trailing slash; there is no wildcard, no
       scheme relaxation and no subdomain matching.
Who:   Built once by the application factory; evaluated by OriginPolicyMiddleware.

Decision table:
    Origin header absent       → NO_ORIGIN  (allow, no Access-Control-* headers)
    Origin in allowed set      → ALLOWED    (Access-Control-Allow-Origin: <origin>)
    anything else              → DENIED     (403 "Not allowed by CORS")

Every decision, NO_ORIGIN and DENIED included, carries `Vary: Origin`.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

DENIED_BODY = "Not allowed by CORS"

# Allowed only when nothing is configured and the environment is development or test
DEV_DEFAULT_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:5173",
)

EXPOSED_HEADERS = (
    "X-Request-ID",
    "RateLimit-Limit",
    "RateLimit-Remaining",
    "RateLimit-Reset",
    "Retry-After",
)

PREFLIGHT_METHODS = "GET,HEAD,PUT,PATCH,POST,DELETE,OPTIONS"
PREFLIGHT_MAX_AGE = 600

VARY_HEADER = {"Vary": "Origin"}


class OriginVerdict(str, enum.Enum):
    NO_ORIGIN = "no_origin"
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class OriginDecision:
    verdict: OriginVerdict
    origin: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.verdict is not OriginVerdict.DENIED


def normalize_origin(origin: str) -> str:
    """Strip surrounding whitespace and a single trailing slash."""
    origin = origin.strip()
    if origin.endswith("/"):
        origin = origin[:-1]
    return origin


class OriginPolicy:
    """
    Immutable origin allow-list plus the credentials flag.

    Read-only after construction, so it is shared across all requests
    without synchronization.
    """

    def __init__(self, origins: Iterable[str], allow_credentials: bool = False):
        normalized = set()
        for origin in origins:
            value = normalize_origin(origin)
            if not value:
                continue
            if value == "*":
                raise ValueError("Wildcard origin '*' is not allowed in the origin policy")
            normalized.add(value)
        self._origins: FrozenSet[str] = frozenset(normalized)
        self.allow_credentials = allow_credentials

    @classmethod
    def from_settings(
        cls,
        origins: Iterable[str],
        allow_credentials: bool,
        allow_dev_defaults: bool,
    ) -> "OriginPolicy":
        """
        Build the policy from configuration.

        With no configured origins, development and test environments fall
        back to DEV_DEFAULT_ORIGINS; every other environment allows nothing.
        """
        configured = [o for o in origins if o and o.strip()]
        if not configured:
            if allow_dev_defaults:
                configured = list(DEV_DEFAULT_ORIGINS)
            else:
                logger.warning("No CORS origins configured; all cross-origin requests will be denied")
        return cls(configured, allow_credentials=allow_credentials)

    @property
    def origins(self) -> FrozenSet[str]:
        return self._origins

    def is_allowed(self, origin: str) -> bool:
        return normalize_origin(origin) in self._origins

    def evaluate(self, origin: Optional[str]) -> OriginDecision:
        if origin is None or not origin.strip():
            return OriginDecision(OriginVerdict.NO_ORIGIN, headers=dict(VARY_HEADER))

        normalized = normalize_origin(origin)
        if normalized not in self._origins:
            return OriginDecision(OriginVerdict.DENIED, origin=normalized, headers=dict(VARY_HEADER))

        headers = {
            "Access-Control-Allow-Origin": normalized,
            "Access-Control-Expose-Headers": ", ".join(EXPOSED_HEADERS),
            **VARY_HEADER,
        }
        if self.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        return OriginDecision(OriginVerdict.ALLOWED, origin=normalized, headers=headers)

    def preflight_headers(
        self, decision: OriginDecision, requested_headers: Optional[str]
    ) -> Dict[str, str]:
        """Headers for a 204 answer to an allowed preflight request."""
        headers = dict(decision.headers)
        headers["Access-Control-Allow-Methods"] = PREFLIGHT_METHODS
        headers["Access-Control-Max-Age"] = str(PREFLIGHT_MAX_AGE)
        if requested_headers:
            headers["Access-Control-Allow-Headers"] = requested_headers
            headers["Vary"] = "Origin, Access-Control-Request-Headers"
        return headers

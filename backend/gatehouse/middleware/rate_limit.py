"""
Gatehouse — Rate Limiting Middleware
======================================

What:  Binds the AdmissionLimiter to the HTTP pipeline.
How:   Resolves the client key from X-Forwarded-For / the peer address, asks
       the limiter for a decision and either short-circuits with 429 or lets
       the request through. RateLimit-* headers go on every non-exempt
       response, admitted or not.
When:  After the origin policy, before the failure boundary and the handler.

Response on rejection:
    HTTP 429, text/plain "Too many requests, please try again later."
    RateLimit-Limit / RateLimit-Remaining / RateLimit-Reset / Retry-After
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from gatehouse.services.admission import REJECTED_BODY, AdmissionLimiter, resolve_client_key


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-client fixed-window admission.

    Exempt paths (health, metrics, docs) pass straight through with no
    counters touched and no rate-limit headers.
    """

    def __init__(self, app, limiter: AdmissionLimiter, trusted_hops: int = 0, **kwargs):
        super().__init__(app, **kwargs)
        self.limiter = limiter
        self.trusted_hops = trusted_hops

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_key = resolve_client_key(
            request.headers.get("X-Forwarded-For"),
            request.client.host if request.client else None,
            self.trusted_hops,
        )
        decision = self.limiter.check(client_key, request.url.path)

        if decision.exempt:
            return await call_next(request)

        if not decision.admitted:
            return PlainTextResponse(REJECTED_BODY, status_code=429, headers=decision.headers)

        response = await call_next(request)
        for name, value in decision.headers.items():
            response.headers[name] = value
        return response

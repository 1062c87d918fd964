"""
Gatehouse — Origin Policy Middleware
======================================

What:  Applies the OriginPolicy to every request.
How:   Denied origins get 403 "Not allowed by CORS" before anything else
       runs. Allowed preflights are answered here with 204. Allowed simple
       requests proceed and get the CORS headers on whatever response comes
       back, error responses included.

Used in place of fastapi.middleware.cors.CORSMiddleware, which only
withholds headers from disallowed origins instead of rejecting them.
"""

import logging
from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from gatehouse.services.origin_policy import DENIED_BODY, OriginPolicy, OriginVerdict

logger = logging.getLogger(__name__)


def _apply_headers(response: Response, headers: Dict[str, str]) -> Response:
    for name, value in headers.items():
        if name == "Vary":
            _merge_vary(response, value)
        else:
            response.headers[name] = value
    return response


def _merge_vary(response: Response, value: str) -> None:
    existing = [v.strip() for v in response.headers.get("Vary", "").split(",") if v.strip()]
    lowered = {v.lower() for v in existing}
    for item in value.split(","):
        item = item.strip()
        if item and item.lower() not in lowered:
            existing.append(item)
            lowered.add(item.lower())
    response.headers["Vary"] = ", ".join(existing)


class OriginPolicyMiddleware(BaseHTTPMiddleware):
    """
    Preflights are answered here, before the limiter, so they are neither
    counted nor given RateLimit-* headers.
    """

    def __init__(self, app, policy: OriginPolicy, **kwargs):
        super().__init__(app, **kwargs)
        self.policy = policy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        decision = self.policy.evaluate(request.headers.get("Origin"))

        if decision.verdict is OriginVerdict.DENIED:
            logger.warning(
                "Origin %s denied for %s %s",
                decision.origin,
                request.method,
                request.url.path,
                extra={"origin": decision.origin, "path": request.url.path},
            )
            return _apply_headers(PlainTextResponse(DENIED_BODY, status_code=403), decision.headers)

        if (
            decision.verdict is OriginVerdict.ALLOWED
            and request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        ):
            headers = self.policy.preflight_headers(
                decision, request.headers.get("Access-Control-Request-Headers")
            )
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        return _apply_headers(response, decision.headers)

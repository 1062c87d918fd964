"""
Gatehouse — Request Correlator
================================

What:  Gives every request one correlation value and exposes it to all
       downstream code, to every log line and to the caller.
How:   Adopts a non-empty inbound X-Request-ID verbatim, otherwise generates
       one. The value is written back onto the request (ASGI scope headers and
       request.state), stored in a ContextVar for loggers, and returned in the
       X-Request-ID response header.
Who:   Outermost middleware; everything after it (origin policy, limiter,
       failure normalizer, access log) reads the value it set.

The value lives in a ContextVar; each concurrently handled request sees only
its own.
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    """16 uppercase hex characters (64 random bits) from a UUID4."""
    return uuid.uuid4().hex[:16].upper()


class RequestIDLogFilter(logging.Filter):
    """Stamps the current request ID onto every log record as `request_id`."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get("") or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Assigns or propagates the request's correlation value.

    Behavior:
        1. Non-empty X-Request-ID from the client → used verbatim
        2. Otherwise → generate_request_id()
        3. Written to the inbound headers, request.state and the ContextVar
        4. Echoed on the response under the same header name
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER)
        rid = inbound if inbound and inbound.strip() else generate_request_id()

        # Downstream Request objects are rebuilt from the same scope
        header_key = REQUEST_ID_HEADER.lower().encode("latin-1")
        request.scope["headers"] = [
            (k, v) for k, v in request.scope["headers"] if k.lower() != header_key
        ] + [(header_key, rid.encode("latin-1"))]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response

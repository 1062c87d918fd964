"""
Gatehouse — Failure Boundary
==============================

What:  The single terminal boundary for handler failures.
How:   Two entry points feed the same FailureNormalizer:
       - FailureBoundaryMiddleware catches anything that escapes the router
         (unclassified errors, persistence errors, raw validation lists).
       - failure_response() is also registered as the exception handler for
         framework HTTP errors and request validation errors, which Starlette
         handles inside the router before they could reach a middleware.
       Either way the caller gets the Canonical Error Record as JSON with the
       record's code as the HTTP status.
"""

from fastapi.encoders import jsonable_encoder
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gatehouse.middleware.request_id import REQUEST_ID_HEADER, request_id_var
from gatehouse.services.failure_normalizer import FailureNormalizer, is_http_error

BODILESS_STATUSES = frozenset({204, 304})


def _current_request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get(REQUEST_ID_HEADER)
        or request_id_var.get("")
    )


def failure_response(request: Request, exc: BaseException) -> Response:
    # Framework HTTP errors keep their headers (Allow, WWW-Authenticate, ...)
    headers = getattr(exc, "headers", None) if is_http_error(exc) else None
    if is_http_error(exc) and exc.status_code in BODILESS_STATUSES:
        return Response(status_code=exc.status_code, headers=headers)

    normalizer: FailureNormalizer = request.app.state.failure_normalizer
    record = normalizer.normalize(exc, _current_request_id(request), request.url.path)
    return JSONResponse(
        status_code=record.code,
        content=jsonable_encoder(record.to_dict()),
        headers=headers,
    )


async def handle_failure(request: Request, exc: Exception) -> Response:
    """Exception-handler form of failure_response()."""
    return failure_response(request, exc)


class FailureBoundaryMiddleware(BaseHTTPMiddleware):
    """Innermost middleware: nothing raised by a handler gets past it."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return failure_response(request, exc)

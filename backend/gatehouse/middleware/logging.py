"""
Gatehouse — Access Log Middleware
===================================

What:  One structured access-log line per governed request.
How:   Times the rest of the pipeline and logs the outcome together with the
       governance context: which origin asked, and how much admission budget
       the client has left.
When:  Directly inside RequestIDMiddleware, so 403 origin denials and 429
       rejections are logged like any other response.

Log levels:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Exempt operational paths (health probes, metrics, docs) are not logged.
Request bodies and auth headers are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.middleware.request_id import request_id_var
from gatehouse.services.admission import UNKNOWN_CLIENT, is_exempt_path

logger = logging.getLogger("gatehouse.access")


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if is_exempt_path(request.url.path):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        peer = request.client.host if request.client else UNKNOWN_CLIENT
        logger.log(
            _level_for(response.status_code),
            "%s %s → %d in %.1fms (origin=%s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.headers.get("origin", "-"),
            extra={
                "request_id": request_id_var.get(""),
                "http_method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
                "peer": peer,
                "origin": request.headers.get("origin"),
                "budget_remaining": response.headers.get("ratelimit-remaining"),
            },
        )
        return response

"""
Papir Backend — Request Logging Middleware
===========================================

What:  One access-log line per HTTP request: method, path, status, duration,
       request ID and client IP.
How:   Measures time around call_next(); the level follows the status code
       (5xx ERROR, 4xx WARNING, otherwise INFO).
Who:   Applied to every request except the health check.

    Request bodies are never logged: they carry customer messages and base64 media.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.client_ip import get_client_ip
from app.middleware.request_id import request_id_var

logger = logging.getLogger("papir.access")

# Polled by load balancers; logging it would drown the useful lines
QUIET_PATHS = {"/api/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = get_client_ip(request)
        rid = getattr(request.state, "request_id", "") or request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response

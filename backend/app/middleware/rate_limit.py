"""
Papir Backend — Rate Limiting Middleware
=========================================

What:  Per-IP sliding window rate limiter for the /api/ routes.
How:   Keeps the timestamps of each client's recent requests in memory; when the
       number inside the window reaches the limit the request is answered with
       429 and a Retry-After header.
Who:   Runs just inside RequestIDMiddleware, so rejections carry a request ID
       and cost no route work.

Defaults: 100 requests per 15 minutes (RATE_LIMIT_REQUESTS / RATE_LIMIT_WINDOW).

Algorithm: Sliding Window Log
    1. Drop the client's timestamps older than now - window
    2. If the remaining count >= limit, reject
    3. Otherwise record now and continue

    State is per process. Several uvicorn workers each enforce their own
    window, so the effective limit is multiplied by the worker count.
"""

import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings
from app.exceptions import RateLimitExceededError
from app.middleware.client_ip import get_client_ip

logger = logging.getLogger(__name__)

LIMITED_PREFIX = "/api/"
EXCLUDED_PATHS = {"/api/health"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window limiter keyed by client IP.

    `max_requests`, `window_seconds` and `clock` default to the settings and
    time.time(); tests pass small values and a fake clock.
    """

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        **kwargs,
    ):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self.clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not path.startswith(LIMITED_PREFIX) or path in EXCLUDED_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request)
        now = self.clock()
        window_start = now - self.window_seconds

        recent = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(recent),
                self.window_seconds,
            )
            return self._rejection(RateLimitExceededError(retry_after=retry_after), request)

        recent.append(now)

        if len(self._requests) > 1000:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    @staticmethod
    def _rejection(exc: RateLimitExceededError, request: Request) -> JSONResponse:
        # Raised exceptions do not reach the app's handlers from inside
        # BaseHTTPMiddleware, so the envelope is built here.
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Too many requests",
                "message": exc.message,
                "details": {"retry_after": exc.retry_after},
                "request_id": getattr(request.state, "request_id", None),
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))

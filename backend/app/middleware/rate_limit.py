"""
DocDigest Backend: Rate Limiting Middleware
=============================================

What:  Per-caller sliding window request limiter.
Why:   Every upload costs a Gemini call, so request floods are cut off
       before they reach extraction or the summarizer.
How:   Keeps recent request timestamps in memory per key:
           user:<id>   when the identity header is present
           ip:<addr>   otherwise
       Requests over the limit get 429 with a Retry-After header.

This guards request volume only. Monthly document and page quotas are the
EntitlementGate's job and are never enforced here.

Algorithm: Sliding Window
    1. Drop the caller's timestamps older than the window
    2. If the remaining count >= limit, reject
    3. Otherwise record now and continue

Single-process only: each uvicorn worker keeps its own window.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings
from app.exceptions import RateLimitExceededError
from app.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

# Sweep idle keys every N recorded requests
CLEANUP_INTERVAL = 1000


def caller_key(request: Request) -> str:
    user_id = request.headers.get(settings.identity_header, "").strip()
    if user_id:
        return f"user:{user_id}"
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Configuration (from settings):
        rate_limit_requests: Max requests per window (default: 100)
        rate_limit_window: Window duration in seconds (default: 3600)
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._recorded = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = caller_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window

        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= settings.rate_limit_requests:
            retry_after = int(timestamps[0] + settings.rate_limit_window - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(timestamps),
                settings.rate_limit_window,
            )
            return self._reject(RateLimitExceededError(retry_after=retry_after))

        timestamps.append(now)
        self._recorded += 1
        if self._recorded % CLEANUP_INTERVAL == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    @staticmethod
    def _reject(error: RateLimitExceededError) -> JSONResponse:
        # Raised errors never reach the app's exception handlers from here,
        # so the body is built in the same shape they produce.
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": error.message,
                "details": error.context,
                "request_id": request_id_var.get() or None,
            },
            headers={"Retry-After": str(error.retry_after)},
        )

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit keys", len(inactive))

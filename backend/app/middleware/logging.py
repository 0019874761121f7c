"""
DocDigest Backend: Access Log Middleware
==========================================

What:  One log line per HTTP request: method, path, status, duration, caller.
Why:   Gives operators request volume, latency and error rates without
       touching route code.
How:   Measures around call_next and logs on the `docdigest.access` logger.
       The request ID is added to the record by RequestIDLogFilter.

Level by status:
    5xx → ERROR, 4xx → WARNING, otherwise INFO.
    A 403 entitlement denial is therefore a WARNING here, while the gate
    itself logs the denial at INFO.

Privacy:
    Logged: method, path, status, duration, client IP, whether an identity
    header was present. Never logged: request bodies or document text.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings

logger = logging.getLogger("docdigest.access")

# Polled every few seconds by load balancers
QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        caller = "user" if request.headers.get(settings.identity_header) else "anonymous"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms %s from %s",
            request.method,
            path,
            status,
            duration_ms,
            caller,
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

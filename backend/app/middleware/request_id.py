"""
DocDigest Backend: Request ID Middleware
==========================================

What:  Assigns a correlation ID to each request and stamps it on every log
       record emitted while the request is being handled.
Why:   One upload produces log lines from several services; a shared ID
       ties them back to the request a user reports.
How:   A ContextVar holds the current ID; RequestIDLogFilter copies it onto
       LogRecord.request_id so the log format can print it.
Who:   Outermost middleware; the filter is installed by setup_logging().

Behavior:
    1. Use the client's X-Request-ID header when present
    2. Otherwise generate a short UUID
    3. Expose it via request_id_var, request.state.request_id and the
       X-Request-ID response header
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one thread each see their own ID.
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDLogFilter(logging.Filter):
    """Adds `request_id` to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get() or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # 8 chars is enough to correlate and stays readable in log lines
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response

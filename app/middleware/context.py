"""
Per-request log context.

Every request gets an id (taken from X-Request-ID when the caller sends a
sane one) and an optional X-Correlation-ID. Both are bound into structlog
so the lines written while a refresh batch runs inside the request can be
grouped, and both are echoed back on the response.
"""

import re
import time
from typing import Optional, Tuple

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.context import (
    clear_context,
    generate_request_id,
    set_correlation_id,
    set_request_id,
)

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"

# Ids end up in log lines verbatim
_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")

UNLOGGED_PATHS = ("/health",)


def _validate_id(value: Optional[str]) -> Optional[str]:
    """Header value if it is a short token of safe characters, else None."""
    if value and _ID_RE.match(value):
        return value
    return None


def _incoming_ids(request: Request) -> Tuple[str, Optional[str]]:
    request_id = _validate_id(request.headers.get(REQUEST_ID_HEADER)) or generate_request_id()
    correlation_id = _validate_id(request.headers.get(CORRELATION_ID_HEADER))
    return request_id, correlation_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id, correlation_id = _incoming_ids(request)
        set_request_id(request_id)
        if correlation_id:
            set_correlation_id(correlation_id)
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            if correlation_id:
                response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            if not request.url.path.startswith(UNLOGGED_PATHS):
                log = logger.warning if status_code >= 500 else logger.info
                log(
                    "Request handled",
                    status_code=status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                )
            clear_context()
            structlog.contextvars.clear_contextvars()

"""Request ID and timing headers for the quoting API."""
import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("smartquote-api.middleware")

SKIP_LOG_PATHS = {"/health", "/metrics"}

# Caller-supplied IDs echoed back unchanged
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def request_id_for(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Tags each response with X-Request-ID and X-Process-Time (ms) and logs quote traffic."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_for(request)
        start = time.perf_counter()
        response: Response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in SKIP_LOG_PATHS:
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                "request completed",
                extra={
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )
        return response

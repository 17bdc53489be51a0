"""
HTTP middleware: request correlation ids and response timing for the REST
surface. WebSocket traffic bypasses both (BaseHTTPMiddleware only sees HTTP).
"""
import logging
import re
import time
import uuid
from typing import Callable, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROCESS_TIME_HEADER = "X-Process-Time"

# accepted client-supplied ids; anything else is replaced
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# probes and scrapes that would flood debug logs
QUIET_PATHS = ("/health/live", "/metrics")


def resolve_request_id(header_value: str) -> str:
    if header_value and _REQUEST_ID_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse or mint a request id, expose it on ``request.state`` and the response."""

    def __init__(self, app, quiet_paths: Iterable[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER, ""))
        request.state.request_id = request_id

        if not request.url.path.startswith(self.quiet_paths):
            logger.debug(f"{request.method} {request.url.path} [{request_id}]")

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Report processing time and warn about slow dashboard or session reads."""

    def __init__(self, app, slow_threshold: float = 1.0):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start_time

        response.headers[PROCESS_TIME_HEADER] = f"{elapsed:.6f}"
        if elapsed > self.slow_threshold:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {elapsed:.2f}s [{request_id}]"
            )

        return response


__all__ = [
    'REQUEST_ID_HEADER',
    'PROCESS_TIME_HEADER',
    'RequestIDMiddleware',
    'TimingMiddleware',
    'resolve_request_id',
]

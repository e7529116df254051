"""Request Context Middleware.

Binds an X-Request-ID to the logging context for the duration of a request,
echoes it back on the response, and adds a Server-Timing header.

Version: 1.0.0
"""

import logging
import time
from typing import Callable, List, Optional, cast
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.utils.logging_config import bind_log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware that propagates request IDs and tracks request timing.

    Features:
    - Reuses the caller's X-Request-ID or generates one
    - Binds the request ID into the log context for the whole request
    - Adds X-Request-ID and Server-Timing response headers
    - Logs slow requests (configurable threshold)
    """

    def __init__(
        self,
        app: Callable,
        slow_threshold_ms: float = 5000.0,
        exclude_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.slow_threshold_ms = slow_threshold_ms
        self.exclude_paths = exclude_paths or ["/health", "/healthz"]

    def _should_track(self, path: str) -> bool:
        return not any(path.startswith(exclude) for exclude in self.exclude_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        start_time = time.perf_counter()
        with bind_log_context(request_id=request_id):
            response: Response = cast(Response, await call_next(request))

        duration_ms = (time.perf_counter() - start_time) * 1000
        path = request.url.path
        if self._should_track(path) and duration_ms > self.slow_threshold_ms:
            logger.warning(
                f"Slow request: {request.method} {path} took {duration_ms:.2f}ms "
                f"(threshold: {self.slow_threshold_ms}ms)",
                extra={
                    "method": request.method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                },
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["Server-Timing"] = f"total;dur={duration_ms:.2f}"
        return response

"""Progress Tracker — Request Logging Middleware."""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tracker.core.logging import get_logger

logger = get_logger("http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one structured line per request and add X-Response-Time."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        level = logger.warning if response.status_code >= 500 else logger.info
        level(
            f"{request.method} {request.url.path} → {response.status_code}",
            extra={
                "endpoint": request.url.path,
                "duration_ms": duration_ms,
                "status_code": response.status_code,
            },
        )
        return response

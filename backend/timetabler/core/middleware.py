from __future__ import annotations

import logging
from time import perf_counter

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        started = perf_counter()
        response = await call_next(request)
        elapsed_ms = (perf_counter() - started) * 1000
        response.headers.setdefault("X-Process-Time-Ms", f"{elapsed_ms:.1f}")
        logger.info(
            "%s %s -> %s in %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects bodies above the configured size before snapshots or configs are parsed."""

    def __init__(self, app, *, max_bytes: int) -> None:
        super().__init__(app)
        self._max_bytes = max(1, max_bytes)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.scope.get("type") != "http":
            return await call_next(request)

        raw_length = request.headers.get("content-length")
        if raw_length:
            try:
                value = int(raw_length)
            except ValueError:
                value = 0
            if value > self._max_bytes:
                return JSONResponse(
                    status_code=413,
                    content={
                        "message": (
                            f"Request body too large ({value} bytes). "
                            f"Maximum allowed is {self._max_bytes} bytes."
                        ),
                        "details": {"max_bytes": self._max_bytes},
                    },
                )
        return await call_next(request)

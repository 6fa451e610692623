"""
Request middleware: correlation IDs, access logging and per-route timeouts.
"""
import asyncio
import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from salesboard.config import config
from salesboard.observability import correlation_context, get_correlation_id, get_logger

logger = get_logger(__name__)

# Polled by load balancers; neither logged nor time-limited
QUIET_PATHS = frozenset({"/api/health"})

# Full-store reads (revenue snapshot, per-currency stats)
SLOW_PATHS = frozenset({"/api/summary/revenue", "/api/sync/stats"})


def request_timeout(path: str) -> float:
    return config.web.slow_request_timeout if path in SLOW_PATHS else config.web.request_timeout


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Runs each request under the caller's X-Request-ID (or a new one),
    echoes it back and logs method, path, status and duration.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        quiet = path in QUIET_PATHS

        with correlation_context(request.headers.get("X-Request-ID")) as correlation_id:
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"{request.method} {path} raised {type(e).__name__}",
                    extra={"path": path, "error": str(e)},
                )
                raise

            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers["X-Request-ID"] = correlation_id
            response.headers["X-Response-Time"] = f"{duration_ms}ms"

            if not quiet or response.status_code >= 500:
                logger.log(
                    _level_for_status(response.status_code),
                    f"{request.method} {path} {response.status_code}",
                    extra={
                        "path": path,
                        "status_code": response.status_code,
                        "duration_ms": duration_ms,
                        "client_ip": request.client.host if request.client else None,
                    },
                )
            return response


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answers 504 when a route exceeds its timeout; must sit inside RequestLoggingMiddleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        timeout = request_timeout(path)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.method} {path} timed out after {timeout}s",
                extra={"path": path, "timeout": timeout},
            )
            return JSONResponse(
                status_code=504,
                content={
                    "detail": f"Request exceeded {timeout}s timeout",
                    "path": path,
                    "correlation_id": get_correlation_id(),
                },
            )

"""
Thesis Supervision Tracker - HTTP Middleware
Request tracing (X-Request-ID), timing and security headers
"""

import logging
import re
import time
from typing import Callable, FrozenSet
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import (
    logger,
    clear_context,
    generate_request_id,
    set_guidance_id,
    set_request_id,
)


# Probes and docs are not worth a log line per hit
QUIET_PATHS: FrozenSet[str] = frozenset({"/", "/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json"})

SLOW_REQUEST_MS = 1000

_GUIDANCE_PATH = re.compile(r"/guidance/([0-9a-fA-F-]{36})")


def is_quiet_path(path: str) -> bool:
    return path in QUIET_PATHS or "/health" in path


def extract_guidance_id(path: str) -> str:
    """Pull a guidance session id out of /guidance/<uuid>/... paths"""
    match = _GUIDANCE_PATH.search(path)
    return match.group(1) if match else ""


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every log record of a request with its id (and guidance session id
    when the path names one), logs the outcome, and returns the id and the
    elapsed time as X-Request-ID / X-Response-Time.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        path = request.url.path
        set_request_id(request_id)
        set_guidance_id(extract_guidance_id(path))

        quiet = is_quiet_path(path)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error(
                f"✗ {request.method} {path} raised {type(exc).__name__} after {elapsed:.2f}ms",
                exc_info=True,
                extra={"event_type": "http_request_error", "http_method": request.method,
                       "http_path": path, "duration_ms": elapsed},
            )
            raise
        else:
            elapsed = (time.perf_counter() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"

            if not quiet:
                logger.log(
                    _level_for(response.status_code),
                    f"{request.method} {path} - {response.status_code} ({elapsed:.2f}ms)",
                    extra={"event_type": "http_request", "http_method": request.method, "http_path": path,
                           "http_status": response.status_code, "duration_ms": elapsed},
                )
                if elapsed > SLOW_REQUEST_MS:
                    logger.warning(f"Slow request: {request.method} {path} took {elapsed:.2f}ms")
            return response
        finally:
            clear_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Static hardening headers; the API serves JSON only"""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response

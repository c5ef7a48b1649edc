from __future__ import annotations

import logging
import threading
from collections import OrderedDict
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hunt_analyzer.config import Settings
from hunt_analyzer.logging_utils import log_event

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT = {"/health"}
AUTH_PATH_PREFIXES = ("/auth", "/callback")


class FixedWindowRateLimiter:
    """Per-key fixed window counter.

    Windows are kept in start order so expired ones can be dropped from the
    front; the map only holds keys seen within the last ``window_sec``.
    """

    def __init__(self, max_requests: int, window_sec: int):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._lock = threading.Lock()
        self._windows: OrderedDict[str, tuple[float, int]] = OrderedDict()

    def _evict_expired(self, now: float) -> None:
        while self._windows:
            key, (started, _) = next(iter(self._windows.items()))
            if now - started < self.window_sec:
                break
            del self._windows[key]

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        if self.max_requests <= 0:
            return True
        now = time.monotonic() if now is None else now
        with self._lock:
            self._evict_expired(now)
            started, count = self._windows.get(key, (now, 0))
            if count >= self.max_requests:
                return False
            self._windows[key] = (started, count + 1)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


def _error_body(request: Request, status_code: int, message: str) -> dict:
    return {
        "error": True,
        "message": message,
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
    }


def _client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    forwarded = request.headers.get("x-forwarded-for", "") if trust_forwarded_for else ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def install_middleware(app: FastAPI, settings: Settings) -> None:
    limiter = FixedWindowRateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_sec)
    allowed_domains = settings.allowed_domain_list

    @app.middleware("http")
    async def internal_tool_guard(request: Request, call_next):
        started = time.perf_counter()
        path = request.url.path

        if settings.is_production and allowed_domains:
            host = request.headers.get("host", "")
            if host not in allowed_domains:
                log_event(logger, "Access denied - unauthorized domain", level=logging.WARNING, host=host)
                return JSONResponse(
                    {"error": "Access denied", "message": "This internal tool is not accessible from this domain"},
                    status_code=403,
                )

        client_ip = _client_ip(request, settings.trust_forwarded_for)
        if path not in RATE_LIMIT_EXEMPT and not limiter.allow(client_ip):
            log_event(logger, "Rate limit exceeded", level=logging.WARNING, ip=client_ip, url=path)
            retry_minutes = max(1, settings.rate_limit_window_sec // 60)
            return JSONResponse(
                {
                    "error": "Too many requests from this IP, please try again later.",
                    "retryAfter": f"{retry_minutes} minutes",
                },
                status_code=429,
            )

        response = await call_next(request)
        response.headers["X-Internal-Tool"] = "true"
        response.headers["X-Robots-Tag"] = "noindex, nofollow, noarchive, nosnippet"
        if path.startswith(AUTH_PATH_PREFIXES):
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"

        log_event(
            logger,
            "HTTP Request",
            method=request.method,
            url=path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 404 and message == "Not Found":
            message = f"Route {request.url.path} not found"
        return JSONResponse(_error_body(request, exc.status_code, message), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
        message = "Internal Server Error" if settings.is_production else (str(exc) or "Internal Server Error")
        return JSONResponse(_error_body(request, 500, message), status_code=500)

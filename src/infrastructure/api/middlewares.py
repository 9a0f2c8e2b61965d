from __future__ import annotations

import logging
import os
import time
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from src.infrastructure.api.logging_config import set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_THRESHOLD_MS = 3000
EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc", "/favicon.ico"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and logs failed or slow requests.

    5xx responses log at ERROR, 4xx and slow responses at WARNING; successful
    requests are not logged.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        rid = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        start = time.perf_counter()
        context = {"event": "request", "http_method": request.method, "http_path": request.url.path}
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.exception("Request raised", extra={**context, "duration_ms": duration_ms})
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = rid
        context.update(http_status=response.status_code, duration_ms=duration_ms)
        if response.status_code >= 500:
            logger.error("Request failed with server error %s", response.status_code, extra=context)
        elif response.status_code >= 400:
            logger.warning("Request failed with client error %s", response.status_code, extra=context)
        elif duration_ms >= SLOW_REQUEST_THRESHOLD_MS:
            logger.warning("Slow request", extra=context)
        return response


def add_default_middlewares(app: FastAPI) -> None:
    # CORS configuration
    # In development/demo mode, allow common frontend origins
    env = os.getenv("ENV", "development")

    if env in ("development", "staging"):
        allowed_origins = [
            "http://localhost:3000",
            "http://localhost:5173",  # Vite default
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
    else:
        # Production: comma separated list, wildcard when unset
        configured = os.getenv("CORS_ALLOWED_ORIGINS", "")
        allowed_origins = [o.strip() for o in configured.split(",") if o.strip()] or ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
    )
    app.add_middleware(RequestLoggingMiddleware)

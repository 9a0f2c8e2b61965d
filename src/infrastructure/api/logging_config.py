"""Process-wide logging setup.

Text lines on stdout, one per record, carrying the request id of the request
being served when there is one. Modules log through
``logging.getLogger(__name__)`` and tag records with ``extra={"event": ...}``
(lifecycle, request, image, metadata, storage, cache).
"""
from __future__ import annotations

import contextvars
import logging
import os
import sys
import uuid

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s rid=%(request_id)s event=%(event)s %(message)s"


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def set_request_id(request_id: str | None = None) -> str:
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_request_id() -> str | None:
    return request_id_var.get()


class RequestContextFilter(logging.Filter):
    """Fill in ``request_id`` and a default ``event`` so the format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        if not hasattr(record, "event"):
            record.event = "-"
        return True


def setup_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestContextFilter())
    root_logger.addHandler(handler)

    # third-party noise
    for name in ("httpx", "httpcore", "hpack", "asyncio", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

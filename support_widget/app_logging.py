"""Engine and access logging.

Every engine module logs through a child of the ``support_widget`` logger,
written to ``widget.log``. When the engine is hosted by the FastAPI app an
HTTP middleware writes one JSON line per request to ``access.log`` through
``uvicorn.access``. Each line carries the request id (echoed back as
``X-Request-Id``) and the widget session the request addressed. Visitor
names and emails are masked like credentials.

Log records may carry ``session_id``, ``conversation_id`` or ``visitor_id``
through ``extra=``; the JSON formatter emits them as top-level keys.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from .limits import get_client_ip

LOGGER_NAME = "support_widget"
ACCESS_LOGGER_NAME = "uvicorn.access"

CONTEXT_FIELDS = ("session_id", "conversation_id", "visitor_id")

SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "token",
    "email",
    "name",
}

UNLOGGED_PATHS = {"/api/health", "/api/metrics"}
_SESSION_PATH = re.compile(r"^/api/widget/sessions/(?P<session_id>[^/]+)")


@dataclass(frozen=True)
class LogSettings:
    log_dir: str = "logs"
    level: int = logging.INFO
    json: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LogSettings":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json=_flag("LOG_JSON"),
            request_bodies=_flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_flag("LOG_ROTATE_UTC"),
        )

    def formatter(self) -> logging.Formatter:
        if self.json:
            return JsonFormatter()
        return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    def file_handler(self, filename: str) -> TimedRotatingFileHandler:
        handler = TimedRotatingFileHandler(
            os.path.join(self.log_dir, filename),
            when="midnight",
            backupCount=self.retention_days,
            utc=self.rotate_utc,
        )
        handler.setFormatter(self.formatter())
        return handler


def _flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _scrub(data: object) -> object:
    """Recursively mask sensitive fields in dictionaries and lists."""

    if isinstance(data, dict):
        return {
            k: ("***" if str(k).lower() in SENSITIVE_FIELDS else _scrub(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def widget_session_id(path: str) -> str | None:
    match = _SESSION_PATH.match(path)
    return match.group("session_id") if match else None


async def _capture_body(request: Request) -> object:
    """Read the request body for logging and replay it to the route."""

    body = await request.body()

    async def receive() -> dict:
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, settings: LogSettings | None = None) -> None:
    """Log every request except health, metrics and the SSE event streams."""

    settings = settings or LogSettings.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if path in UNLOGGED_PATHS or path.endswith("/events"):
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        body = await _capture_body(request) if settings.request_bodies else None
        start = time.time()
        response = await call_next(request)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "client_ip": get_client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        session_id = widget_session_id(path)
        if session_id:
            entry["session_id"] = session_id
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Attach rotating file handlers to the engine and access loggers.

    The engine logger keeps handlers installed earlier; the access logger's
    handlers are always replaced so uvicorn's console handler goes away.
    """

    settings = LogSettings.from_env()
    os.makedirs(settings.log_dir, exist_ok=True)

    widget_logger = logging.getLogger(LOGGER_NAME)
    if not widget_logger.handlers:
        widget_logger.addHandler(settings.file_handler("widget.log"))
    widget_logger.setLevel(settings.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(settings.file_handler("access.log"))
    access_logger.setLevel(settings.level)

    if app is not None:
        cast(Any, app).logger = widget_logger
        _install_access_logging(app, settings)

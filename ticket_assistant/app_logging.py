"""Logging setup for the assistant service.

Records from every ``ticket_assistant.*`` module go to ``assistant.log`` and
one JSON line per HTTP request goes to ``access.log``; both rotate at
midnight. Records logged with ``extra={"ticket_id": ...}`` carry the ticket in
both the text and the JSON layout, and access lines for
``/api/tickets/{id}/...`` carry it too, so one ticket's turn can be followed
across the two files.

Configuration comes from :class:`LogSettings`, read from LOG_DIR, LOG_LEVEL,
LOG_JSON, LOG_REQUEST_BODIES, LOG_RETENTION_DAYS and LOG_ROTATE_UTC.
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

ROOT_LOGGER = "ticket_assistant"
ACCESS_LOGGER = "uvicorn.access"

_TICKET_PATH = re.compile(r"^/api/tickets/(\d+)(?:/|$)")
_QUIET_PATHS = frozenset({"/api/health"})

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "api_key",
        "apikey",
        "voice_key",
        "voicekey",
        "x-api-key",
    }
)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class LogSettings:
    directory: str = "logs"
    level: int = logging.INFO
    as_json: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LogSettings":
        return cls(
            directory=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
            as_json=_env_flag("LOG_JSON"),
            request_bodies=_env_flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
        )

    def handler(self, filename: str) -> TimedRotatingFileHandler:
        handler = TimedRotatingFileHandler(
            os.path.join(self.directory, filename),
            when="midnight",
            backupCount=self.retention_days,
            utc=self.rotate_utc,
        )
        handler.setFormatter(JsonFormatter() if self.as_json else TicketFormatter())
        return handler


class TicketFormatter(logging.Formatter):
    """Plain-text layout; prefixes ``[ticket N]`` when the record names one."""

    def __init__(self) -> None:
        super().__init__("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ticket_id = getattr(record, "ticket_id", None)
        return line if ticket_id is None else f"[ticket {ticket_id}] {line}"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        ticket_id = getattr(record, "ticket_id", None)
        if ticket_id is not None:
            payload["ticket_id"] = ticket_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _scrub(data: object) -> object:
    """Mask credential keys (API and voice keys included) at any depth."""

    if isinstance(data, dict):
        return {
            key: ("***" if str(key).lower() in SENSITIVE_FIELDS else _scrub(value))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


def ticket_id_from_path(path: str) -> int | None:
    match = _TICKET_PATH.match(path)
    return int(match.group(1)) if match else None


async def _read_body(request: Request) -> object | None:
    # Starlette consumes the stream once; hand the bytes back to the route.
    raw = await request.body()

    async def receive() -> dict:
        return {"type": "http.request", "body": raw, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not raw:
        return None
    try:
        return _scrub(json.loads(raw))
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, settings: LogSettings | None = None) -> None:
    """Log one JSON line per request and echo ``X-Request-Id`` back."""

    settings = settings or LogSettings.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if path in _QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _read_body(request) if settings.request_bodies else None

        response = await call_next(request)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": request.headers.get("X-Forwarded-For")
            or (request.client.host if request.client is not None else None),
            "headers": _scrub(dict(request.headers)),
        }
        ticket_id = ticket_id_from_path(path)
        if ticket_id is not None:
            entry["ticket_id"] = ticket_id
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str), extra={"ticket_id": ticket_id})
        return response


def init_logging(app: FastAPI | None = None, settings: LogSettings | None = None) -> logging.Logger:
    """Configure the assistant and access loggers; returns the assistant logger.

    The assistant logger keeps handlers it already has, so building several
    apps in one process does not duplicate lines. The access logger is reset
    because uvicorn installs its own console handler on it.
    """

    settings = settings or LogSettings.from_env()
    os.makedirs(settings.directory, exist_ok=True)

    assistant_logger = logging.getLogger(ROOT_LOGGER)
    if not assistant_logger.handlers:
        assistant_logger.addHandler(settings.handler("assistant.log"))
    assistant_logger.setLevel(settings.level)

    access_logger = logging.getLogger(ACCESS_LOGGER)
    access_logger.handlers.clear()
    access_logger.addHandler(settings.handler("access.log"))
    access_logger.setLevel(settings.level)

    if app is not None:
        cast(Any, app).logger = assistant_logger
        _install_access_logging(app, settings)
    return assistant_logger

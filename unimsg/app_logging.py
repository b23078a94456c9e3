"""Application and access logging setup.

``app.log`` collects the ``unimsg`` logger tree and ``access.log`` gets one
JSON line per HTTP request. Both rotate at midnight. Request bodies are only
logged when LOG_REQUEST_BODIES is on, and then with participant addresses and
message text masked.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "unimsg"
ACCESS_LOGGER_NAME = "uvicorn.access"

# Probes and scrapes would drown out real traffic.
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

PERSONAL_FIELDS = frozenset(
    {
        "address",
        "sender_address",
        "content",
        "summary",
        "context",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def _scrub(data: object) -> object:
    """Mask personal fields at any depth of a decoded JSON body."""

    if isinstance(data, dict):
        return {
            k: ("***" if k.lower() in PERSONAL_FIELDS else _scrub(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


async def _capture_body(request: Request) -> object | None:
    """Read the body for logging and replay it to the route handler."""

    body = await request.body()

    async def receive() -> dict:
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]

    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return "<non-json body>"


def _install_access_logging(app: FastAPI) -> None:
    """Add the middleware writing access lines and echoing ``X-Request-Id``."""

    log_bodies = _env_flag("LOG_REQUEST_BODIES")
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        body = await _capture_body(request) if log_bodies else None

        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query": str(request.url.query) or None,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": request.client.host if request.client else None,
        }
        if body is not None:
            entry["body"] = body
        access_logger.info(json.dumps(entry, default=str))
        return response


def _attach_file_handler(
    logger: logging.Logger,
    path: str,
    formatter: logging.Formatter,
    retention_days: int,
    rotate_utc: bool,
) -> None:
    for existing in list(logger.handlers):
        if isinstance(existing, TimedRotatingFileHandler):
            logger.removeHandler(existing)
            existing.close()
    handler = TimedRotatingFileHandler(
        path, when="midnight", backupCount=retention_days, utc=rotate_utc
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def init_logging(app: FastAPI | None = None) -> None:
    """Point the app and access loggers at rotating files under LOG_DIR."""

    log_dir = os.getenv("LOG_DIR", "logs")
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = _env_flag("LOG_ROTATE_UTC")
    if _env_flag("LOG_JSON"):
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"
        )

    os.makedirs(log_dir, exist_ok=True)
    for name, filename in (
        (APP_LOGGER_NAME, "app.log"),
        (ACCESS_LOGGER_NAME, "access.log"),
    ):
        logger = logging.getLogger(name)
        _attach_file_handler(
            logger, os.path.join(log_dir, filename), formatter, retention_days, rotate_utc
        )
        logger.setLevel(level)

    if app is not None:
        cast(Any, app).logger = logging.getLogger(APP_LOGGER_NAME)
        _install_access_logging(app)

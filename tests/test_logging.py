import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from unimsg.app_logging import _install_access_logging, _scrub, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def isolated_loggers():
    saved = {
        name: list(logging.getLogger(name).handlers)
        for name in ("unimsg", "uvicorn.access")
    }
    yield
    for name, handlers in saved.items():
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = handlers


def test_timed_rotating_handler_configuration(tmp_path, monkeypatch, isolated_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers("unimsg")
    access_logger = _clear_handlers("uvicorn.access")

    init_logging()

    for logger in (app_logger, access_logger):
        handler = next(
            h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)
        )
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5


def test_service_logs_land_in_app_log(tmp_path, monkeypatch, isolated_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    _clear_handlers("unimsg")
    _clear_handlers("uvicorn.access")
    init_logging()

    logging.getLogger("unimsg.conversations.service").info("member joined")
    for handler in logging.getLogger("unimsg").handlers:
        handler.flush()

    assert "member joined" in (tmp_path / "app.log").read_text()


def test_scrub_masks_personal_fields_at_any_depth():
    scrubbed = _scrub(
        {
            "Summary": "private",
            "sender_address": "a@x.com",
            "content": "private",
            "channel": "email",
            "nested": [{"address": "b@x.com", "display_name": "Bob"}],
        }
    )

    assert scrubbed == {
        "Summary": "***",
        "sender_address": "***",
        "content": "***",
        "channel": "email",
        "nested": [{"address": "***", "display_name": "Bob"}],
    }


def test_access_logging_request_id_and_scrubbing(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = FastAPI()

    @app.post("/ingest")
    async def ingest(request: Request):
        body = await request.json()
        return {"rid": request.state.request_id, "content": body["content"]}

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    _install_access_logging(app)

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/ingest",
            json={"sender_address": "a@x.com", "content": "secret text", "channel": "sms"},
            headers={"X-Request-Id": "abc"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc", "content": "secret text"}

        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert data["path"] == "/ingest"
        assert data["body"] == {"sender_address": "***", "content": "***", "channel": "sms"}

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_reinitialising_replaces_file_handlers(tmp_path, monkeypatch, isolated_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    app_logger = _clear_handlers("unimsg")
    _clear_handlers("uvicorn.access")

    init_logging()
    init_logging()

    rotating = [h for h in app_logger.handlers if isinstance(h, TimedRotatingFileHandler)]
    assert len(rotating) == 1


def test_access_line_omits_headers_and_body_by_default(caplog, monkeypatch):
    monkeypatch.delenv("LOG_REQUEST_BODIES", raising=False)
    app = FastAPI()

    @app.get("/messages")
    async def messages():
        return []

    _install_access_logging(app)

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.get(
            "/messages?conversation_id=abc", headers={"Authorization": "Bearer x"}
        )

        rid = resp.headers["X-Request-Id"]
        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == rid
        assert data["query"] == "conversation_id=abc"
        assert "headers" not in data
        assert "body" not in data

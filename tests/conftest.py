import os
import pathlib
import sys
import tempfile
from contextlib import contextmanager

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

# Read by unimsg.main at import time.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="unimsg-logs-"))
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTO_MIGRATE", "false")

from unimsg.conversations import InMemoryMessagingRepository, MessagingService


@pytest.fixture
def repository() -> InMemoryMessagingRepository:
    return InMemoryMessagingRepository()


@pytest.fixture
def service(repository) -> MessagingService:
    return MessagingService(repository)


@pytest.fixture
def api_client(monkeypatch, repository):
    """TestClient whose routers run against the in-memory repository."""
    from fastapi.testclient import TestClient

    from unimsg.routers import context

    @contextmanager
    def fake_open_service():
        yield MessagingService(repository)

    monkeypatch.setattr(context, "_open_service", fake_open_service)

    from unimsg.main import app

    return TestClient(app)

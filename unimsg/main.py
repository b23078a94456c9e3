"""FastAPI application wiring for unimsg.

- Configures logging, optional CORS, Prometheus metrics and rate limiting.
- Applies ``schema.sql`` on startup when a database is configured.
- Mounts the participant, conversation, message and ingestion routers.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.db import connect, ensure_schema
from .routers import conversations, ingest, messages, participants

load_dotenv()

logger = logging.getLogger(__name__)

RATE_LIMIT = os.getenv("RATE_LIMIT", "120/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
AUTO_MIGRATE = os.getenv("AUTO_MIGRATE", "true").lower() == "true"


def get_client_ip(request: Request) -> str:
    """Key the limiter on the first ``X-Forwarded-For`` hop or the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if AUTO_MIGRATE and os.getenv("DATABASE_URL"):
        with connect() as conn:
            ensure_schema(conn)
    else:
        logger.info("Skipping schema bootstrap")
    yield


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[RATE_LIMIT],
    enabled=RATE_LIMIT_ENABLED,
)

app = FastAPI(title="unimsg", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
cors_origins = os.getenv("CORS_ORIGINS")
if cors_origins:
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(participants.router)
app.include_router(conversations.router)
app.include_router(messages.router)
app.include_router(ingest.router)

Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
@limiter.exempt
async def health():
    """Liveness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }

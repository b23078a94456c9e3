"""Per-request service wiring shared by the API routers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from fastapi import HTTPException, status

from ..conversations.errors import BadRequestError, NotFoundError
from ..conversations.repository import PostgresMessagingRepository
from ..conversations.service import MessagingService
from ..core.db import connect

logger = logging.getLogger(__name__)


def _get_conn() -> psycopg.Connection:
    try:
        return connect()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:
        logger.exception("Could not connect to the database")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc


@contextmanager
def _open_service() -> Iterator[MessagingService]:
    conn = _get_conn()
    try:
        yield MessagingService(PostgresMessagingRepository(conn))
    finally:
        conn.close()


@contextmanager
def service_context() -> Iterator[MessagingService]:
    """Yield a service and translate its failures into HTTP errors."""

    with _open_service() as service:
        try:
            yield service
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except BadRequestError as exc:
            raise HTTPException(
                status_code=400, detail={"reason": exc.reason, "message": str(exc)}
            ) from exc
        except HTTPException:
            raise
        except Exception as exc:
            logger.exception("Unhandled failure while serving request")
            raise HTTPException(status_code=500, detail="Internal server error") from exc

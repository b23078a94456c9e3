"""Database helpers for psycopg connections and schema bootstrap."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psycopg

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schema.sql"


def get_database_url() -> str:
    """Return ``DATABASE_URL`` or raise ``RuntimeError`` when it is unset."""

    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not configured")
    return url


def connect(database_url: str | None = None) -> psycopg.Connection:
    """Open an autocommit connection.

    Each statement commits on its own, so the natural-key upserts and the
    conditional membership insert are the only atomic units and a failed
    message insert never undoes an earlier membership link.
    """

    return psycopg.connect(database_url or get_database_url(), autocommit=True)


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create tables and indexes if missing.

    Non-destructive: ``schema.sql`` only uses ``IF NOT EXISTS`` clauses so it
    can be executed any number of times.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    if not conn.autocommit:
        conn.commit()
    logger.info("Schema ensured from %s", schema_sql_path.name)

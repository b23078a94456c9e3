"""End-to-end checks against a real PostgreSQL database (skipped when absent)."""

import os
from datetime import datetime, timezone
from uuid import uuid4

import psycopg
import pytest

from unimsg.conversations import MessagingService, PostgresMessagingRepository
from unimsg.core.db import connect, ensure_schema


@pytest.fixture
def pg_service():
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not configured")
    try:
        conn = connect(url)
    except psycopg.Error:
        pytest.skip("database not available")
    ensure_schema(conn)
    ensure_schema(conn)
    yield MessagingService(PostgresMessagingRepository(conn))
    conn.close()


def test_scenario_against_postgres(pg_service):
    suffix = uuid4().hex
    p1 = pg_service.resolve_participant(f"a-{suffix}@x.com", "Alice")
    assert pg_service.resolve_participant(f"a-{suffix}@x.com", "Alice B").id == p1.id

    c1 = pg_service.resolve_conversation(f"ext-{suffix}", topic="Billing")
    again = pg_service.resolve_conversation(f"ext-{suffix}", topic="Other")
    assert again.id == c1.id
    assert again.started_at == c1.started_at
    assert again.topic == "Billing"

    m2 = pg_service.record_message(
        c1.id, p1.id, "email", datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc), "again"
    )
    m1 = pg_service.record_message(
        c1.id, p1.id, "email", datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc), "hello"
    )
    assert pg_service.ensure_member(c1.id, p1.id) is False

    full = pg_service.get_full_conversation(c1.id)
    assert [p.id for p in full.participants] == [p1.id]
    assert [m.id for m in full.messages] == [m1.id, m2.id]
    assert len(full.conversation.participants) == 1

    summary = pg_service.summarize_messages(c1.id, [m1.id, m2.id], "both")
    assert summary.from_date == m1.sent_at
    assert summary.to_date == m2.sent_at
    assert [s.id for s in pg_service.list_message_summaries(c1.id)] == [summary.id]

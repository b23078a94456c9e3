"""Storage backends for participants, conversations, messages and summaries."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row

from . import schemas

_METADATA_FIELDS = ("summary", "context")


class MessagingRepository(Protocol):
    """Abstraction over the store backing :class:`MessagingService`.

    Only ``upsert_participant``, ``upsert_conversation`` and ``add_member`` are
    required to be atomic; every other call is an independent read or write.
    """

    # Participants
    def upsert_participant(
        self,
        address: str,
        display_name: Optional[str],
        kind: schemas.ParticipantKind,
        description: Optional[str],
    ) -> Optional[schemas.Participant]: ...

    def get_participant(self, participant_id: UUID) -> Optional[schemas.Participant]: ...

    def get_participant_by_address(self, address: str) -> Optional[schemas.Participant]: ...

    def get_participants(self, participant_ids: Sequence[UUID]) -> List[schemas.Participant]: ...

    def list_participants(self) -> List[schemas.Participant]: ...

    # Conversations
    def upsert_conversation(
        self, external_id: str, topic: Optional[str], started_at: datetime
    ) -> Optional[schemas.Conversation]: ...

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def get_conversation_by_external_id(
        self, external_id: str
    ) -> Optional[schemas.Conversation]: ...

    def list_conversations(self) -> List[schemas.Conversation]: ...

    def add_member(
        self, conversation_id: UUID, participant_id: UUID, joined_at: datetime
    ) -> bool: ...

    def update_conversation_metadata(
        self, conversation_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Conversation]: ...

    # Messages
    def insert_message(self, message: schemas.Message) -> schemas.Message: ...

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]: ...

    def get_messages(self, message_ids: Sequence[UUID]) -> List[schemas.Message]: ...

    def list_messages(
        self, conversation_id: Optional[UUID] = None, *, ascending: bool = False
    ) -> List[schemas.Message]: ...

    def update_message_metadata(
        self, message_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Message]: ...

    # Message summaries
    def insert_summary(self, summary: schemas.MessageSummary) -> schemas.MessageSummary: ...

    def list_summaries(self, conversation_id: UUID) -> List[schemas.MessageSummary]: ...


def _set_clause(changes: Dict[str, Any]) -> tuple[str, List[Any]]:
    fields = [key for key in _METADATA_FIELDS if key in changes]
    if not fields:
        raise ValueError("No metadata fields to update")
    return ", ".join(f"{key} = %s" for key in fields), [changes[key] for key in fields]


# ---------------------------------------------------------------------------
# PostgreSQL repository

_MEMBERS_JSON = """
    COALESCE(
        (
            SELECT json_agg(
                json_build_object('participant_id', m.participant_id, 'joined_at', m.joined_at)
                ORDER BY m.joined_at, m.seq
            )
            FROM conversation_members m
            WHERE m.conversation_id = c.id
        ),
        '[]'::json
    ) AS participants
"""


class PostgresMessagingRepository:
    """PostgreSQL implementation of :class:`MessagingRepository`.

    Natural-key upserts use ``INSERT ... ON CONFLICT``; the embedded membership
    list of a conversation is stored in ``conversation_members`` whose primary
    key on ``(conversation_id, participant_id)`` makes joins idempotent.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Participant operations ---------------------------------------------------
    def upsert_participant(
        self,
        address: str,
        display_name: Optional[str],
        kind: schemas.ParticipantKind,
        description: Optional[str],
    ) -> Optional[schemas.Participant]:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO participants (id, address, display_name, kind, description)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (address) DO UPDATE
                SET display_name = EXCLUDED.display_name,
                    kind = EXCLUDED.kind,
                    description = EXCLUDED.description
                RETURNING *
                """,
                (uuid4(), address, display_name, kind.value, description),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Participant(**row)

    def get_participant(self, participant_id: UUID) -> Optional[schemas.Participant]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM participants WHERE id = %s", (participant_id,))
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Participant(**row)

    def get_participant_by_address(self, address: str) -> Optional[schemas.Participant]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM participants WHERE address = %s", (address,))
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Participant(**row)

    def get_participants(self, participant_ids: Sequence[UUID]) -> List[schemas.Participant]:
        if not participant_ids:
            return []
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM participants WHERE id = ANY(%s)",
                (list(participant_ids),),
            )
            rows = cur.fetchall()
        return [schemas.Participant(**row) for row in rows]

    def list_participants(self) -> List[schemas.Participant]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM participants ORDER BY address")
            rows = cur.fetchall()
        return [schemas.Participant(**row) for row in rows]

    # Conversation operations --------------------------------------------------
    def upsert_conversation(
        self, external_id: str, topic: Optional[str], started_at: datetime
    ) -> Optional[schemas.Conversation]:
        # The no-op SET on conflict makes RETURNING yield the existing row.
        with self._cursor() as cur:
            cur.execute(
                f"""
                WITH c AS (
                    INSERT INTO conversations (id, external_id, topic, started_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (external_id) DO UPDATE
                    SET external_id = EXCLUDED.external_id
                    RETURNING *
                )
                SELECT c.*, {_MEMBERS_JSON}
                FROM c
                """,
                (uuid4(), external_id, topic, started_at),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT c.*, {_MEMBERS_JSON} FROM conversations c WHERE c.id = %s",
                (conversation_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    def get_conversation_by_external_id(
        self, external_id: str
    ) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT c.*, {_MEMBERS_JSON} FROM conversations c WHERE c.external_id = %s",
                (external_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    def list_conversations(self) -> List[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT c.*, {_MEMBERS_JSON}
                FROM conversations c
                ORDER BY c.started_at DESC
                """
            )
            rows = cur.fetchall()
        return [schemas.Conversation(**row) for row in rows]

    def add_member(
        self, conversation_id: UUID, participant_id: UUID, joined_at: datetime
    ) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversation_members (conversation_id, participant_id, joined_at)
                SELECT %s, %s, %s
                WHERE EXISTS (SELECT 1 FROM conversations WHERE id = %s)
                ON CONFLICT (conversation_id, participant_id) DO NOTHING
                """,
                (conversation_id, participant_id, joined_at, conversation_id),
            )
            return cur.rowcount == 1

    def update_conversation_metadata(
        self, conversation_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Conversation]:
        clause, values = _set_clause(changes)
        with self._cursor() as cur:
            cur.execute(
                f"""
                WITH c AS (
                    UPDATE conversations SET {clause}
                    WHERE id = %s
                    RETURNING *
                )
                SELECT c.*, {_MEMBERS_JSON}
                FROM c
                """,
                (*values, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    # Message operations -------------------------------------------------------
    def insert_message(self, message: schemas.Message) -> schemas.Message:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages
                    (id, conversation_id, sender_id, channel, external_id,
                     sent_at, content, summary, context)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    message.id,
                    message.conversation_id,
                    message.sender_id,
                    message.channel,
                    message.external_id,
                    message.sent_at,
                    message.content,
                    message.summary,
                    message.context,
                ),
            )
            row = cur.fetchone()
        return schemas.Message(**row)

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM messages WHERE id = %s", (message_id,))
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Message(**row)

    def get_messages(self, message_ids: Sequence[UUID]) -> List[schemas.Message]:
        if not message_ids:
            return []
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM messages WHERE id = ANY(%s)",
                (list(message_ids),),
            )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def list_messages(
        self, conversation_id: Optional[UUID] = None, *, ascending: bool = False
    ) -> List[schemas.Message]:
        direction = "ASC" if ascending else "DESC"
        query = "SELECT * FROM messages"
        params: List[Any] = []
        if conversation_id is not None:
            query += " WHERE conversation_id = %s"
            params.append(conversation_id)
        query += f" ORDER BY sent_at {direction}, seq {direction}"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def update_message_metadata(
        self, message_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Message]:
        clause, values = _set_clause(changes)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE messages SET {clause} WHERE id = %s RETURNING *",
                (*values, message_id),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Message(**row)

    # Summary operations -------------------------------------------------------
    def insert_summary(self, summary: schemas.MessageSummary) -> schemas.MessageSummary:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO message_summaries
                    (id, conversation_id, message_ids, summary, context,
                     created_at, from_date, to_date)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    summary.id,
                    summary.conversation_id,
                    list(summary.message_ids),
                    summary.summary,
                    summary.context,
                    summary.created_at,
                    summary.from_date,
                    summary.to_date,
                ),
            )
            row = cur.fetchone()
        return schemas.MessageSummary(**row)

    def list_summaries(self, conversation_id: UUID) -> List[schemas.MessageSummary]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM message_summaries
                WHERE conversation_id = %s
                ORDER BY from_date ASC, created_at ASC
                """,
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [schemas.MessageSummary(**row) for row in rows]


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryMessagingRepository(MessagingRepository):
    """Process-local store; a single lock stands in for per-operation atomicity."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._participants: Dict[UUID, schemas.Participant] = {}
        self._conversations: Dict[UUID, schemas.Conversation] = {}
        self._messages: Dict[UUID, schemas.Message] = {}
        self._summaries: Dict[UUID, schemas.MessageSummary] = {}

    def upsert_participant(
        self,
        address: str,
        display_name: Optional[str],
        kind: schemas.ParticipantKind,
        description: Optional[str],
    ) -> Optional[schemas.Participant]:
        with self._lock:
            existing = self._find_participant(address)
            if existing is None:
                existing = schemas.Participant(id=uuid4(), address=address)
                self._participants[existing.id] = existing
            existing.display_name = display_name
            existing.kind = kind
            existing.description = description
            return existing.model_copy(deep=True)

    def get_participant(self, participant_id: UUID) -> Optional[schemas.Participant]:
        with self._lock:
            participant = self._participants.get(participant_id)
            return participant.model_copy(deep=True) if participant else None

    def get_participant_by_address(self, address: str) -> Optional[schemas.Participant]:
        with self._lock:
            participant = self._find_participant(address)
            return participant.model_copy(deep=True) if participant else None

    def get_participants(self, participant_ids: Sequence[UUID]) -> List[schemas.Participant]:
        wanted = set(participant_ids)
        with self._lock:
            return [
                p.model_copy(deep=True)
                for pid, p in self._participants.items()
                if pid in wanted
            ]

    def list_participants(self) -> List[schemas.Participant]:
        with self._lock:
            participants = [p.model_copy(deep=True) for p in self._participants.values()]
        participants.sort(key=lambda p: p.address)
        return participants

    def upsert_conversation(
        self, external_id: str, topic: Optional[str], started_at: datetime
    ) -> Optional[schemas.Conversation]:
        with self._lock:
            existing = self._find_conversation(external_id)
            if existing is None:
                existing = schemas.Conversation(
                    id=uuid4(),
                    external_id=external_id,
                    topic=topic,
                    started_at=started_at,
                    participants=[],
                )
                self._conversations[existing.id] = existing
            return existing.model_copy(deep=True)

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    def get_conversation_by_external_id(
        self, external_id: str
    ) -> Optional[schemas.Conversation]:
        with self._lock:
            conversation = self._find_conversation(external_id)
            return conversation.model_copy(deep=True) if conversation else None

    def list_conversations(self) -> List[schemas.Conversation]:
        with self._lock:
            conversations = [
                c.model_copy(deep=True) for c in self._conversations.values()
            ]
        conversations.sort(key=lambda c: c.started_at, reverse=True)
        return conversations

    def add_member(
        self, conversation_id: UUID, participant_id: UUID, joined_at: datetime
    ) -> bool:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return False
            if any(m.participant_id == participant_id for m in conversation.participants):
                return False
            conversation.participants.append(
                schemas.ConversationParticipant(
                    participant_id=participant_id, joined_at=joined_at
                )
            )
            return True

    def update_conversation_metadata(
        self, conversation_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Conversation]:
        _set_clause(changes)
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            for key in _METADATA_FIELDS:
                if key in changes:
                    setattr(conversation, key, changes[key])
            return conversation.model_copy(deep=True)

    def insert_message(self, message: schemas.Message) -> schemas.Message:
        with self._lock:
            if message.id in self._messages:
                raise KeyError(f"Duplicate message id {message.id}")
            self._messages[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]:
        with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    def get_messages(self, message_ids: Sequence[UUID]) -> List[schemas.Message]:
        wanted = set(message_ids)
        with self._lock:
            return [
                m.model_copy(deep=True) for mid, m in self._messages.items() if mid in wanted
            ]

    def list_messages(
        self, conversation_id: Optional[UUID] = None, *, ascending: bool = False
    ) -> List[schemas.Message]:
        with self._lock:
            messages = [
                m.model_copy(deep=True)
                for m in self._messages.values()
                if conversation_id is None or m.conversation_id == conversation_id
            ]
        # dicts keep insertion order and sort() is stable, so ties stay in storage order
        if ascending:
            messages.sort(key=lambda m: m.sent_at)
        else:
            messages.reverse()
            messages.sort(key=lambda m: m.sent_at, reverse=True)
        return messages

    def update_message_metadata(
        self, message_id: UUID, changes: Dict[str, Any]
    ) -> Optional[schemas.Message]:
        _set_clause(changes)
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            for key in _METADATA_FIELDS:
                if key in changes:
                    setattr(message, key, changes[key])
            return message.model_copy(deep=True)

    def insert_summary(self, summary: schemas.MessageSummary) -> schemas.MessageSummary:
        with self._lock:
            self._summaries[summary.id] = summary.model_copy(deep=True)
        return summary.model_copy(deep=True)

    def list_summaries(self, conversation_id: UUID) -> List[schemas.MessageSummary]:
        with self._lock:
            summaries = [
                s.model_copy(deep=True)
                for s in self._summaries.values()
                if s.conversation_id == conversation_id
            ]
        summaries.sort(key=lambda s: (s.from_date, s.created_at))
        return summaries

    # Helpers (caller holds the lock) ------------------------------------------
    def _find_participant(self, address: str) -> Optional[schemas.Participant]:
        for participant in self._participants.values():
            if participant.address == address:
                return participant
        return None

    def _find_conversation(self, external_id: str) -> Optional[schemas.Conversation]:
        for conversation in self._conversations.values():
            if conversation.external_id == external_id:
                return conversation
        return None

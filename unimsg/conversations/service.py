"""Consistency rules for participants, conversations, messages and summaries.

The store offers no multi-record transactions. The only atomic steps are the
natural-key upserts and the conditional membership insert; recording a message
is three sequential store calls (existence checks, membership link, insert).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID, uuid4

from . import schemas
from .errors import BadRequestError, NotFoundError, UpsertInvariantError
from .models import IngestedMessage
from .repository import MessagingRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_key(value: str, name: str) -> str:
    if not value or not value.strip():
        raise BadRequestError("invalid_key", f"{name} must not be empty")
    return value


class MessagingService:
    """Coordinates identity resolution, membership and message history."""

    def __init__(self, repository: MessagingRepository) -> None:
        self._repository = repository

    # ------------------------------------------------------------------
    # Identity & upsert resolution

    def resolve_participant(
        self,
        address: str,
        display_name: str | None = None,
        kind: schemas.ParticipantKind = schemas.ParticipantKind.HUMAN,
        description: str | None = None,
    ) -> schemas.Participant:
        """Return the participant for ``address``, creating it on first sight.

        The id and address are fixed at creation; display name, kind and
        description are overwritten on every call.
        """

        _require_key(address, "address")
        participant = self._repository.upsert_participant(
            address, display_name, kind, description
        )
        if participant is None:
            logger.error("Participant upsert for %s returned no record", address)
            raise UpsertInvariantError(f"Upsert of participant {address} returned nothing")
        return participant

    def resolve_conversation(
        self, external_id: str, topic: str | None = None
    ) -> schemas.Conversation:
        """Return the conversation for ``external_id``, creating it on first sight.

        ``topic`` and ``started_at`` are only written when the conversation is
        created; later calls leave them untouched.
        """

        _require_key(external_id, "external_id")
        conversation = self._repository.upsert_conversation(
            external_id, topic, _utcnow()
        )
        if conversation is None:
            logger.error("Conversation upsert for %s returned no record", external_id)
            raise UpsertInvariantError(
                f"Upsert of conversation {external_id} returned nothing"
            )
        return conversation

    # ------------------------------------------------------------------
    # Membership

    def ensure_member(self, conversation_id: UUID, participant_id: UUID) -> bool:
        """Record ``participant_id`` as a member unless it already is one.

        Returns ``True`` only when a new membership record was written.
        """

        joined = self._repository.add_member(conversation_id, participant_id, _utcnow())
        if joined:
            logger.info(
                "Participant %s joined conversation %s", participant_id, conversation_id
            )
        return joined

    # ------------------------------------------------------------------
    # Messages

    def record_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        channel: str,
        sent_at: datetime,
        content: str,
        external_id: str | None = None,
        summary: str | None = None,
        context: str | None = None,
    ) -> schemas.Message:
        """Append a message, linking the sender to the conversation first."""

        message, _ = self._record(
            conversation_id,
            sender_id,
            channel,
            sent_at,
            content,
            external_id=external_id,
            summary=summary,
            context=context,
        )
        return message

    def _record(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        channel: str,
        sent_at: datetime,
        content: str,
        external_id: str | None = None,
        summary: str | None = None,
        context: str | None = None,
    ) -> tuple[schemas.Message, bool]:
        if self._repository.get_conversation(conversation_id) is None:
            raise NotFoundError("Conversation", conversation_id)
        if self._repository.get_participant(sender_id) is None:
            raise NotFoundError("Participant", sender_id)

        # Not rolled back if the insert below fails.
        joined = self.ensure_member(conversation_id, sender_id)

        message = schemas.Message(
            id=uuid4(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            channel=channel,
            external_id=external_id,
            sent_at=_as_utc(sent_at),
            content=content,
            summary=summary,
            context=context,
        )
        stored = self._repository.insert_message(message)
        logger.debug("Stored message %s in conversation %s", stored.id, conversation_id)
        return stored, joined

    def create_message(self, payload: schemas.MessageCreate) -> schemas.Message:
        return self.record_message(
            payload.conversation_id,
            payload.sender_id,
            payload.channel,
            payload.sent_at,
            payload.content,
            external_id=payload.external_id,
            summary=payload.summary,
            context=payload.context,
        )

    def ingest_message(self, message: IngestedMessage) -> schemas.IngestResponse:
        """Record a message addressed by sender address and conversation external id."""

        participant = self.resolve_participant(
            message.sender_address,
            message.sender_display_name,
            message.sender_kind,
            message.sender_description,
        )
        conversation = self.resolve_conversation(
            message.conversation_external_id, message.topic
        )
        stored, joined = self._record(
            conversation.id,
            participant.id,
            message.channel,
            message.sent_at,
            message.content,
            external_id=message.external_id,
            summary=message.summary,
            context=message.context,
        )
        refreshed = self._repository.get_conversation(conversation.id) or conversation
        return schemas.IngestResponse(
            participant=participant,
            conversation=refreshed,
            message=stored,
            joined=joined,
        )

    # ------------------------------------------------------------------
    # Message summaries

    def summarize_messages(
        self,
        conversation_id: UUID,
        message_ids: Iterable[UUID],
        summary: str,
        context: str | None = None,
    ) -> schemas.MessageSummary:
        """Persist a summary covering ``message_ids`` within one conversation.

        The covering range is ``[min(sent_at), max(sent_at)]`` of the selected
        messages. Nothing is written when validation fails.
        """

        selection = list(dict.fromkeys(message_ids))
        if not selection:
            raise BadRequestError("empty_selection", "No messages selected")

        messages = self._repository.get_messages(selection)
        found = {m.id for m in messages}
        missing = [str(mid) for mid in selection if mid not in found]
        if missing:
            raise BadRequestError(
                "message_not_found", f"Messages not found: {', '.join(missing)}"
            )
        if any(m.conversation_id != conversation_id for m in messages):
            raise BadRequestError(
                "conversation_mismatch",
                "All messages must belong to the specified conversation",
            )

        sent_times = [m.sent_at for m in messages]
        record = schemas.MessageSummary(
            id=uuid4(),
            conversation_id=conversation_id,
            message_ids=selection,
            summary=summary,
            context=context,
            created_at=_utcnow(),
            from_date=min(sent_times),
            to_date=max(sent_times),
        )
        stored = self._repository.insert_summary(record)
        logger.info(
            "Stored summary %s covering %d messages of conversation %s",
            stored.id,
            len(selection),
            conversation_id,
        )
        return stored

    def create_message_summary(
        self, payload: schemas.MessageSummaryCreate
    ) -> schemas.MessageSummary:
        return self.summarize_messages(
            payload.conversation_id,
            payload.message_ids,
            payload.summary,
            context=payload.context,
        )

    def list_message_summaries(
        self, conversation_id: UUID
    ) -> list[schemas.MessageSummary]:
        return self._repository.list_summaries(conversation_id)

    # ------------------------------------------------------------------
    # Assembly

    def get_full_conversation(self, conversation_id: UUID) -> schemas.FullConversation:
        """Load a conversation with its members and chronologically ordered messages.

        Membership entries whose participant no longer resolves are skipped.
        """

        conversation = self._repository.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)

        member_ids = [m.participant_id for m in conversation.participants]
        by_id = {p.id: p for p in self._repository.get_participants(member_ids)}
        participants = [by_id[pid] for pid in member_ids if pid in by_id]

        messages = self._repository.list_messages(conversation_id, ascending=True)
        return schemas.FullConversation(
            conversation=conversation,
            participants=participants,
            messages=messages,
        )

    # ------------------------------------------------------------------
    # Queries and metadata

    def get_participant(self, participant_id: UUID) -> schemas.Participant:
        participant = self._repository.get_participant(participant_id)
        if participant is None:
            raise NotFoundError("Participant", participant_id)
        return participant

    def find_participant_by_address(self, address: str) -> schemas.Participant:
        participant = self._repository.get_participant_by_address(address)
        if participant is None:
            raise NotFoundError("Participant", address)
        return participant

    def list_participants(self) -> list[schemas.Participant]:
        return self._repository.list_participants()

    def get_conversation(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._repository.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def find_conversation_by_external_id(self, external_id: str) -> schemas.Conversation:
        conversation = self._repository.get_conversation_by_external_id(external_id)
        if conversation is None:
            raise NotFoundError("Conversation", external_id)
        return conversation

    def list_conversations(self) -> list[schemas.Conversation]:
        return self._repository.list_conversations()

    def update_conversation_metadata(
        self, conversation_id: UUID, update: schemas.MetadataUpdate
    ) -> schemas.Conversation:
        changes = update.changes()
        if not changes:
            return self.get_conversation(conversation_id)
        conversation = self._repository.update_conversation_metadata(
            conversation_id, changes
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def get_message(self, message_id: UUID) -> schemas.Message:
        message = self._repository.get_message(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        return message

    def list_messages(self, conversation_id: UUID | None = None) -> list[schemas.Message]:
        return self._repository.list_messages(conversation_id)

    def update_message_metadata(
        self, message_id: UUID, update: schemas.MetadataUpdate
    ) -> schemas.Message:
        changes = update.changes()
        if not changes:
            return self.get_message(message_id)
        message = self._repository.update_message_metadata(message_id, changes)
        if message is None:
            raise NotFoundError("Message", message_id)
        return message

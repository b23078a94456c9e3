"""Recording messages and the implicit join on first message."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from unimsg.conversations import InMemoryMessagingRepository, MessagingService, NotFoundError


def ts(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def test_unknown_conversation_fails_without_side_effects(service, repository):
    participant = service.resolve_participant("a@x.com")

    with pytest.raises(NotFoundError) as exc:
        service.record_message(uuid4(), participant.id, "email", ts(10), "hello")

    assert exc.value.entity == "Conversation"
    assert repository.list_messages() == []
    assert all(not c.participants for c in repository.list_conversations())


def test_unknown_sender_fails_without_side_effects(service, repository):
    conversation = service.resolve_conversation("ext-1")

    with pytest.raises(NotFoundError) as exc:
        service.record_message(conversation.id, uuid4(), "email", ts(10), "hello")

    assert exc.value.entity == "Participant"
    assert repository.list_messages() == []
    assert service.get_conversation(conversation.id).participants == []


def test_first_message_joins_sender_and_second_does_not(service, repository):
    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")

    first = service.record_message(conversation.id, participant.id, "email", ts(10), "hello")
    assert len(service.get_conversation(conversation.id).participants) == 1

    second = service.record_message(conversation.id, participant.id, "sms", ts(11), "again")

    assert first.id != second.id
    assert len(repository.list_messages(conversation.id)) == 2
    assert len(service.get_conversation(conversation.id).participants) == 1


def test_recorded_message_is_fully_populated(service):
    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")

    message = service.record_message(
        conversation.id,
        participant.id,
        "email",
        ts(10),
        "hello",
        external_id="src-1",
        summary="greeting",
        context="first contact",
    )

    assert message.id
    assert message.conversation_id == conversation.id
    assert message.sender_id == participant.id
    assert message.channel == "email"
    assert message.sent_at == ts(10)
    assert message.external_id == "src-1"
    assert message.summary == "greeting"
    assert message.context == "first contact"
    assert service.get_message(message.id) == message


def test_sent_at_is_kept_as_supplied_and_naive_values_are_utc(service):
    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")

    past = service.record_message(
        conversation.id, participant.id, "sms", datetime(1999, 12, 31, 23, 59), "old"
    )

    assert past.sent_at == datetime(1999, 12, 31, 23, 59, tzinfo=timezone.utc)


def test_external_id_is_not_a_dedup_key(service, repository):
    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")

    service.record_message(conversation.id, participant.id, "email", ts(10), "hi", external_id="dup")
    service.record_message(conversation.id, participant.id, "email", ts(10), "hi", external_id="dup")

    assert len(repository.list_messages(conversation.id)) == 2


def test_membership_survives_failed_insert():
    class FailingInsertRepository(InMemoryMessagingRepository):
        def insert_message(self, message):
            raise RuntimeError("store unavailable")

    service = MessagingService(FailingInsertRepository())
    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")

    with pytest.raises(RuntimeError, match="store unavailable"):
        service.record_message(conversation.id, participant.id, "email", ts(10), "hello")

    members = service.get_conversation(conversation.id).participants
    assert [m.participant_id for m in members] == [participant.id]


def test_message_metadata_update_only_touches_supplied_fields(service):
    from unimsg.conversations import schemas

    conversation = service.resolve_conversation("ext-1")
    participant = service.resolve_participant("a@x.com")
    message = service.record_message(
        conversation.id, participant.id, "email", ts(10), "hello", context="ctx"
    )

    updated = service.update_message_metadata(
        message.id, schemas.MetadataUpdate(summary="short")
    )

    assert updated.summary == "short"
    assert updated.context == "ctx"
    assert updated.content == "hello"
    assert updated.sent_at == message.sent_at
    assert service.update_message_metadata(message.id, schemas.MetadataUpdate()) == updated

    with pytest.raises(NotFoundError):
        service.update_message_metadata(uuid4(), schemas.MetadataUpdate(summary="x"))


def test_list_messages_newest_first_with_optional_filter(service):
    c1 = service.resolve_conversation("ext-1")
    c2 = service.resolve_conversation("ext-2")
    participant = service.resolve_participant("a@x.com")
    m1 = service.record_message(c1.id, participant.id, "email", ts(9), "one")
    m2 = service.record_message(c2.id, participant.id, "email", ts(11), "two")
    m3 = service.record_message(c1.id, participant.id, "email", ts(10), "three")

    assert [m.id for m in service.list_messages()] == [m2.id, m3.id, m1.id]
    assert [m.id for m in service.list_messages(c1.id)] == [m3.id, m1.id]

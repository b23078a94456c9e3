"""Pydantic schemas for participants, conversations, messages and summaries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ParticipantKind(str, Enum):
    HUMAN = "human"
    AI = "ai"


class ParticipantCreate(BaseModel):
    """Payload used to create or refresh a participant by address."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(min_length=1)
    display_name: str | None = None
    kind: ParticipantKind = Field(default=ParticipantKind.HUMAN, alias="type")
    description: str | None = None


class Participant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    address: str
    display_name: str | None = None
    kind: ParticipantKind = Field(default=ParticipantKind.HUMAN, alias="type")
    description: str | None = None


class ConversationParticipant(BaseModel):
    """Membership record embedded in a conversation."""

    participant_id: UUID
    joined_at: datetime


class ConversationCreate(BaseModel):
    external_id: str = Field(min_length=1)
    topic: str | None = None


class Conversation(BaseModel):
    id: UUID
    external_id: str
    topic: str | None = None
    started_at: datetime
    participants: list[ConversationParticipant] = Field(default_factory=list)
    summary: str | None = None
    context: str | None = None


class MetadataUpdate(BaseModel):
    """Patchable summary/context fields; omitted fields are left untouched."""

    summary: str | None = None
    context: str | None = None

    def changes(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (("summary", self.summary), ("context", self.context))
            if value is not None
        }


class MessageCreate(BaseModel):
    conversation_id: UUID
    sender_id: UUID
    channel: str
    external_id: str | None = None
    sent_at: datetime
    content: str
    summary: str | None = None
    context: str | None = None


class Message(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    channel: str
    external_id: str | None = None
    sent_at: datetime
    content: str
    summary: str | None = None
    context: str | None = None


class MessageSummaryCreate(BaseModel):
    conversation_id: UUID
    message_ids: list[UUID]
    summary: str
    context: str | None = None


class MessageSummary(BaseModel):
    id: UUID
    conversation_id: UUID
    message_ids: list[UUID]
    summary: str
    context: str | None = None
    created_at: datetime
    from_date: datetime
    to_date: datetime


class FullConversation(BaseModel):
    conversation: Conversation
    participants: list[Participant] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)


class IngestRequest(BaseModel):
    """Inbound message addressed by natural keys rather than internal ids."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_external_id: str = Field(min_length=1)
    topic: str | None = None
    sender_address: str = Field(min_length=1)
    sender_display_name: str | None = None
    sender_kind: ParticipantKind = Field(
        default=ParticipantKind.HUMAN, alias="sender_type"
    )
    sender_description: str | None = None
    channel: str
    external_id: str | None = None
    sent_at: datetime
    content: str
    summary: str | None = None
    context: str | None = None


class IngestResponse(BaseModel):
    participant: Participant
    conversation: Conversation
    message: Message
    joined: bool

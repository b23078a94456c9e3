"""Conversation API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from ..conversations import schemas
from . import context

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=schemas.Conversation)
def create_conversation(payload: schemas.ConversationCreate) -> schemas.Conversation:
    """Create the conversation for ``external_id`` or return the existing one."""
    with context.service_context() as svc:
        return svc.resolve_conversation(payload.external_id, payload.topic)


@router.get("", response_model=list[schemas.Conversation])
def list_conversations() -> list[schemas.Conversation]:
    with context.service_context() as svc:
        return svc.list_conversations()


@router.get("/by-external-id/{external_id}", response_model=schemas.Conversation)
def find_conversation_by_external_id(external_id: str) -> schemas.Conversation:
    with context.service_context() as svc:
        return svc.find_conversation_by_external_id(external_id)


@router.get("/{conversation_id}", response_model=schemas.FullConversation)
def get_conversation(conversation_id: UUID) -> schemas.FullConversation:
    """Return the conversation with its participants and messages oldest first."""
    with context.service_context() as svc:
        return svc.get_full_conversation(conversation_id)


@router.put("/{conversation_id}/metadata", response_model=schemas.Conversation)
def update_conversation_metadata(
    conversation_id: UUID, payload: schemas.MetadataUpdate
) -> schemas.Conversation:
    with context.service_context() as svc:
        return svc.update_conversation_metadata(conversation_id, payload)


@router.get(
    "/{conversation_id}/summaries", response_model=list[schemas.MessageSummary]
)
def list_conversation_summaries(conversation_id: UUID) -> list[schemas.MessageSummary]:
    with context.service_context() as svc:
        return svc.list_message_summaries(conversation_id)

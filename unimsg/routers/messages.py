"""Message and message-summary API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from ..conversations import schemas
from . import context

router = APIRouter(tags=["messages"])


@router.post("/messages", response_model=schemas.Message)
def create_message(payload: schemas.MessageCreate) -> schemas.Message:
    """Record a message; the sender joins the conversation if needed."""
    with context.service_context() as svc:
        return svc.create_message(payload)


@router.get("/messages", response_model=list[schemas.Message])
def list_messages(conversation_id: UUID | None = None) -> list[schemas.Message]:
    with context.service_context() as svc:
        return svc.list_messages(conversation_id)


@router.get("/messages/{message_id}", response_model=schemas.Message)
def get_message(message_id: UUID) -> schemas.Message:
    with context.service_context() as svc:
        return svc.get_message(message_id)


@router.put("/messages/{message_id}/metadata", response_model=schemas.Message)
def update_message_metadata(
    message_id: UUID, payload: schemas.MetadataUpdate
) -> schemas.Message:
    with context.service_context() as svc:
        return svc.update_message_metadata(message_id, payload)


@router.post("/message-summaries", response_model=schemas.MessageSummary)
def create_message_summary(
    payload: schemas.MessageSummaryCreate,
) -> schemas.MessageSummary:
    with context.service_context() as svc:
        return svc.create_message_summary(payload)

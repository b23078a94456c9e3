"""Ingestion route for messages addressed by natural keys."""

from __future__ import annotations

from fastapi import APIRouter

from ..conversations import schemas
from ..conversations.models import IngestedMessage
from . import context

router = APIRouter(tags=["ingest"])


def _to_ingested(payload: schemas.IngestRequest) -> IngestedMessage:
    return IngestedMessage(
        conversation_external_id=payload.conversation_external_id,
        sender_address=payload.sender_address,
        channel=payload.channel,
        sent_at=payload.sent_at,
        content=payload.content,
        topic=payload.topic,
        sender_display_name=payload.sender_display_name,
        sender_kind=payload.sender_kind,
        sender_description=payload.sender_description,
        external_id=payload.external_id,
        summary=payload.summary,
        context=payload.context,
    )


@router.post("/ingest", response_model=schemas.IngestResponse)
def ingest_message(payload: schemas.IngestRequest) -> schemas.IngestResponse:
    """Resolve sender and conversation by natural key, then record the message."""
    with context.service_context() as svc:
        return svc.ingest_message(_to_ingested(payload))

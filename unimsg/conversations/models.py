"""Domain models used by the messaging service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .schemas import ParticipantKind


@dataclass
class IngestedMessage:
    """A message as delivered by an upstream channel, keyed by natural ids."""

    conversation_external_id: str
    sender_address: str
    channel: str
    sent_at: datetime
    content: str
    topic: str | None = None
    sender_display_name: str | None = None
    sender_kind: ParticipantKind = ParticipantKind.HUMAN
    sender_description: str | None = None
    external_id: str | None = None
    summary: str | None = None
    context: str | None = None

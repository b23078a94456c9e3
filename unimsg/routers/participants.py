"""Participant API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from ..conversations import schemas
from . import context

router = APIRouter(prefix="/participants", tags=["participants"])


@router.post("", response_model=schemas.Participant)
def create_participant(payload: schemas.ParticipantCreate) -> schemas.Participant:
    """Create a participant or refresh the one registered under ``address``."""
    with context.service_context() as svc:
        return svc.resolve_participant(
            payload.address,
            payload.display_name,
            payload.kind,
            payload.description,
        )


@router.get("", response_model=list[schemas.Participant])
def list_participants() -> list[schemas.Participant]:
    with context.service_context() as svc:
        return svc.list_participants()


@router.get("/by-address/{address}", response_model=schemas.Participant)
def find_participant_by_address(address: str) -> schemas.Participant:
    with context.service_context() as svc:
        return svc.find_participant_by_address(address)


@router.get("/{participant_id}", response_model=schemas.Participant)
def get_participant(participant_id: UUID) -> schemas.Participant:
    with context.service_context() as svc:
        return svc.get_participant(participant_id)

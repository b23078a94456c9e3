"""Participants, conversations, messages and message summaries."""

from . import schemas
from .errors import BadRequestError, NotFoundError, UpsertInvariantError
from .models import IngestedMessage
from .repository import InMemoryMessagingRepository, PostgresMessagingRepository
from .service import MessagingService

__all__ = [
    "BadRequestError",
    "InMemoryMessagingRepository",
    "IngestedMessage",
    "MessagingService",
    "NotFoundError",
    "PostgresMessagingRepository",
    "UpsertInvariantError",
    "schemas",
]

"""Typed failures raised by the messaging service."""

from __future__ import annotations


class NotFoundError(RuntimeError):
    """Raised when a referenced participant, conversation or message is missing."""

    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class BadRequestError(ValueError):
    """Raised when caller-supplied data violates a consistency rule."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class UpsertInvariantError(RuntimeError):
    """An upsert that must yield a record returned nothing."""

"""Local storage data models."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EntityType(StrEnum):
    """Mutation categories the sync queue understands."""

    ANALYSIS = "analysis"
    CHAT_MESSAGE = "chat"
    PREFERENCE = "preference"
    RECOMMENDATION = "recommendation"


class OperationAction(StrEnum):
    """Kinds of queued mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CacheEntry(BaseModel):
    """Envelope stored for every cached value."""

    version: int
    key: str
    data: Any
    stored_at_ms: int
    expires_at_ms: int

    def is_valid(self, now_ms: int) -> bool:
        """An entry is valid strictly before its expiry."""
        return now_ms < self.expires_at_ms


class PendingOperation(BaseModel):
    """A mutation that has not reached the backend yet."""

    id: str
    entity_type: EntityType
    action: OperationAction
    payload: Any = None
    enqueued_at_ms: int
    retry_count: int = 0


class QueueSnapshot(BaseModel):
    """Persisted form of the whole pending-operation queue."""

    version: int
    operations: list[PendingOperation] = Field(default_factory=list)


class TranslationSnapshot(BaseModel):
    """Persisted form of the translation cache, oldest entry first."""

    version: int
    entries: dict[str, str] = Field(default_factory=dict)

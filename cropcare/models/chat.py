"""Assistant chat data models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Role(StrEnum):
    """Transcript author."""

    USER = "user"
    ASSISTANT = "assistant"


class DeliveryStatus(StrEnum):
    """Simulated read-receipt progression for user messages."""

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ERROR = "error"


DELIVERY_ORDER = [DeliveryStatus.SENDING, DeliveryStatus.SENT, DeliveryStatus.DELIVERED, DeliveryStatus.READ]


class ChatMessage(BaseModel):
    """One transcript entry."""

    id: str
    role: Role
    content: str
    timestamp_ms: int
    delivery_status: DeliveryStatus | None = None

    def advance(self, status: DeliveryStatus) -> bool:
        """Move the delivery status forward; never backwards, never out of ``error``.

        Returns:
            True if the status changed
        """
        current = self.delivery_status
        if self.role != Role.USER or current is None or current == DeliveryStatus.ERROR:
            return False
        if status == DeliveryStatus.ERROR:
            self.delivery_status = status
            return True
        if DELIVERY_ORDER.index(status) <= DELIVERY_ORDER.index(current):
            return False
        self.delivery_status = status
        return True

    def to_api(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatConversation(BaseModel):
    """Persisted (prompt, response) pair."""

    id: str
    user_id: str
    message_content: str
    response_content: str | None = None
    message_type: str = "text"
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None


class StreamEvent(BaseModel):
    """A parsed event from the chat response stream."""

    delta: str = ""
    done: bool = False


class ChatRequest(BaseModel):
    """Body sent to the chat function."""

    messages: list[dict[str, str]] = Field(default_factory=list)
    user_id: str | None = Field(default=None, serialization_alias="userId")
    language: str = "en"

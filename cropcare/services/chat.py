"""Streaming conversation with the farming assistant."""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cropcare.api.backend import Backend
from cropcare.api.functions import FunctionsClient
from cropcare.core.constants import CLEARED_MESSAGE, WELCOME_MESSAGE, ChatConstants, Functions, Tables
from cropcare.core.ids import timestamped_id
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import (
    APIError,
    CropCareError,
    QuotaExceededError,
    RateLimitError,
    StorageQuotaExceededError,
    TransientNetworkError,
    ValidationError,
)
from cropcare.models.chat import ChatConversation, ChatMessage, ChatRequest, DeliveryStatus, Role
from cropcare.models.storage import EntityType, OperationAction
from cropcare.services.chat_stream import EventStreamParser
from cropcare.storage.cache import CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)

GREETING_ID = "welcome"
GENERIC_FAILURE = "Failed to get response"


class AssistantChannel:
    """Transcript plus at most one streamed request in flight.

    The first transcript entry is a greeting that is never sent to the assistant.
    User messages carry a delivery status that only moves forward:
    ``sending -> sent -> delivered`` on timers, ``read`` once the request is
    accepted, or ``error`` if it fails.
    """

    def __init__(
        self,
        functions: FunctionsClient,
        backend: Backend,
        cache: LocalCache,
        queue: PendingQueue,
        monitor: NetworkMonitor,
        user_id: str | None = None,
        language: str = "en",
        sent_delay: float = 0.3,
        delivered_delay: float = 0.6,
        clock: Clock = now_ms,
    ) -> None:
        self.functions = functions
        self.backend = backend
        self.cache = cache
        self.queue = queue
        self.monitor = monitor
        self.user_id = user_id
        self.language = language
        self.sent_delay = sent_delay
        self.delivered_delay = delivered_delay
        self.clock = clock

        self.transcript: list[ChatMessage] = [self._greeting(WELCOME_MESSAGE)]
        self.error: str | None = None
        self._request: asyncio.Task | None = None
        self._cancel_requested = False
        self._timers: set[asyncio.Task] = set()

    def _greeting(self, content: str) -> ChatMessage:
        return ChatMessage(id=GREETING_ID, role=Role.ASSISTANT, content=content, timestamp_ms=self.clock())

    @property
    def is_streaming(self) -> bool:
        return self._request is not None and not self._request.done()

    async def send(self, text: str) -> ChatMessage | None:
        """Send a message and stream the reply into the transcript.

        Empty text, or a send while another is streaming, is ignored.

        Returns:
            The user transcript entry, or None if the send was ignored

        Raises:
            ValidationError: If the message is too long
            RateLimitError: On HTTP 429
            QuotaExceededError: On HTTP 402
            APIError: On any other rejected request
            TransientNetworkError: If the connection fails
        """
        content = (text or "").strip()
        if not content or self.is_streaming:
            return None
        if len(content) > ChatConstants.MAX_MESSAGE_LENGTH:
            raise ValidationError("message", len(content), "Message is too long (max 5000 characters)")

        self.error = None
        messages = [m.to_api() for m in self.transcript if m.id != GREETING_ID]
        user_message = ChatMessage(
            id=timestamped_id(self.clock),
            role=Role.USER,
            content=content,
            timestamp_ms=self.clock(),
            delivery_status=DeliveryStatus.SENDING,
        )
        self.transcript.append(user_message)
        messages.append(user_message.to_api())
        self._start_delivery_timers(user_message)

        self._cancel_requested = False
        self._request = asyncio.create_task(self._exchange(user_message, messages))
        try:
            await self._request
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            logger.info("Chat request cancelled")
        finally:
            self._request = None
        return user_message

    def _start_delivery_timers(self, message: ChatMessage) -> None:
        async def progress() -> None:
            await asyncio.sleep(self.sent_delay)
            message.advance(DeliveryStatus.SENT)
            await asyncio.sleep(max(0.0, self.delivered_delay - self.sent_delay))
            message.advance(DeliveryStatus.DELIVERED)

        timer = asyncio.create_task(progress())
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _exchange(self, user_message: ChatMessage, messages: list[dict[str, str]]) -> None:
        body = ChatRequest(messages=messages, user_id=self.user_id, language=self.language).model_dump(by_alias=True)
        try:
            async with self.functions.stream(Functions.CHAT, body) as response:
                user_message.advance(DeliveryStatus.READ)
                assistant = ChatMessage(
                    id=timestamped_id(self.clock), role=Role.ASSISTANT, content="", timestamp_ms=self.clock()
                )
                self.transcript.append(assistant)

                parser = EventStreamParser()
                async for chunk in response.aiter_bytes():
                    for event in parser.feed(chunk):
                        assistant.content += event.delta
                    if parser.done:
                        break
                for event in parser.close():
                    assistant.content += event.delta
        except (RateLimitError, QuotaExceededError) as e:
            self._fail(user_message, str(e))
            raise
        except (APIError, TransientNetworkError) as e:
            logger.error(f"Chat request failed: {e}")
            self._fail(user_message, GENERIC_FAILURE)
            raise

        if assistant.content:
            await self._persist(user_message.content, assistant.content)

    def _fail(self, message: ChatMessage, error: str) -> None:
        message.advance(DeliveryStatus.ERROR)
        self.error = error

    async def _persist(self, prompt: str, response: str) -> None:
        if not self.user_id:
            return
        record = {
            "user_id": self.user_id,
            "message_content": prompt,
            "response_content": response,
            "message_type": "text",
        }
        try:
            await self.backend.insert(Tables.CHAT, record)
            self.cache.invalidate(EntityType.CHAT_MESSAGE, self.user_id)
        except TransientNetworkError as e:
            logger.warning(f"Saving chat message deferred: {e}")
            try:
                self.queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, record)
            except StorageQuotaExceededError as quota:
                logger.error(f"Error saving chat message: {quota}")
        except CropCareError as e:
            logger.error(f"Error saving chat message: {e}")

    def cancel(self) -> bool:
        """Abort the in-flight request, keeping whatever has streamed so far.

        Returns:
            True if a request was cancelled
        """
        if not self.is_streaming:
            return False
        self._cancel_requested = True
        self._request.cancel()
        return True

    async def retry_last(self) -> ChatMessage | None:
        """Resend the last user message as a new send."""
        last = next((m for m in reversed(self.transcript) if m.role == Role.USER), None)
        if last is None or self.is_streaming:
            return None
        self.transcript.remove(last)
        return await self.send(last.content)

    def clear(self) -> None:
        self.cancel()
        for timer in list(self._timers):
            timer.cancel()
        self.transcript = [self._greeting(CLEARED_MESSAGE)]
        self.error = None

    async def load_history(self, user_id: str | None = None, limit: int = ChatConstants.HISTORY_LIMIT) -> int:
        """Replace the transcript (after the greeting) with persisted exchanges.

        Offline, or when the read fails, the cached history is used.

        Returns:
            Number of exchanges loaded
        """
        user_id = user_id or self.user_id
        if not user_id or self.is_streaming:
            return 0

        rows: list[dict[str, Any]] | None = None
        if self.monitor.is_online:
            try:
                rows = await self.backend.select(
                    Tables.CHAT, {"user_id": user_id}, order_by="created_at", descending=True, limit=limit
                )
                rows.reverse()
                self.cache.set(user_key(CacheKeys.CHAT_HISTORY, user_id), rows)
            except CropCareError as e:
                logger.error(f"Error loading chat history: {e}")
        if rows is None:
            rows = (self.cache.get(user_key(CacheKeys.CHAT_HISTORY, user_id)) or [])[-limit:]

        loaded: list[ChatMessage] = []
        count = 0
        for row in rows:
            try:
                conversation = ChatConversation.model_validate(row)
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed chat record: {e}")
                continue
            loaded.extend(self._to_messages(conversation))
            count += 1

        if loaded:
            self.transcript = [self.transcript[0], *loaded]
        return count

    def _to_messages(self, conversation: ChatConversation) -> list[ChatMessage]:
        timestamp = (
            int(conversation.created_at.timestamp() * 1000) if conversation.created_at else self.clock()
        )
        messages = [
            ChatMessage(
                id=f"{conversation.id}-user",
                role=Role.USER,
                content=conversation.message_content,
                timestamp_ms=timestamp,
                delivery_status=DeliveryStatus.READ,
            )
        ]
        if conversation.response_content:
            messages.append(
                ChatMessage(
                    id=f"{conversation.id}-assistant",
                    role=Role.ASSISTANT,
                    content=conversation.response_content,
                    timestamp_ms=timestamp,
                )
            )
        return messages

    async def aclose(self) -> None:
        self.cancel()
        for timer in list(self._timers):
            timer.cancel()

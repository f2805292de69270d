# =============================================================================
# tests/unit/test_chat.py
# Unit tests for the event stream parser and the assistant channel
# =============================================================================

import asyncio
import json

import httpx
import pytest

from cropcare.core.constants import CLEARED_MESSAGE, Tables
from cropcare.exceptions import QuotaExceededError, RateLimitError, ServiceError, TransientNetworkError, ValidationError
from cropcare.models.chat import ChatMessage, DeliveryStatus, Role
from cropcare.models.storage import EntityType, OperationAction
from cropcare.services.chat import GENERIC_FAILURE, GREETING_ID, AssistantChannel
from cropcare.services.chat_stream import EventStreamParser, extract_delta


def sse(*deltas: str, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps({'choices': [{'delta': {'content': delta}}]}, ensure_ascii=False)}\n" for delta in deltas]
    if done:
        lines.append("data: [DONE]\n")
    return "".join(lines).encode("utf-8")


def collect(parser: EventStreamParser, chunks: list[bytes]) -> str:
    text = ""
    for chunk in chunks:
        text += "".join(event.delta for event in parser.feed(chunk))
    text += "".join(event.delta for event in parser.close())
    return text


class TestEventStreamParser:
    """Test incremental parsing of streamed deltas"""

    def test_split_reads_give_same_result(self):
        """Any split of the byte stream yields the same text"""
        body = b": keep-alive\n\n" + sse("Water ", "गेहूं ", "early.")

        whole = collect(EventStreamParser(), [body])
        bytewise = collect(EventStreamParser(), [body[i : i + 1] for i in range(len(body))])
        uneven = collect(EventStreamParser(), [body[:7], body[7:50], body[50:51], body[51:]])

        assert whole == bytewise == uneven == "Water गेहूं early."

    def test_done_stops_parsing(self):
        """Nothing after the done marker is emitted"""
        parser = EventStreamParser()
        events = parser.feed(sse("a") + sse("ignored", done=False))

        assert [event.delta for event in events if event.delta] == ["a"]
        assert parser.done
        assert parser.feed(sse("more")) == []

    def test_malformed_line_is_skipped(self):
        """A complete but invalid line is dropped and parsing continues"""
        parser = EventStreamParser()
        events = parser.feed(b"data: {broken\n" + sse("ok", done=False))

        assert [event.delta for event in events] == ["ok"]

    def test_crlf_and_comments(self):
        """CRLF endings and comment lines are handled"""
        body = sse("x", done=False).replace(b"\n", b"\r\n")

        assert collect(EventStreamParser(), [b":comment\r\n", body]) == "x"

    def test_unterminated_tail_flushed_on_close(self):
        """A final line without a newline is parsed at close"""
        parser = EventStreamParser()
        body = sse("tail", done=False).rstrip(b"\n")

        assert parser.feed(body) == []
        assert [event.delta for event in parser.close()] == ["tail"]

    @pytest.mark.parametrize(
        "payload",
        [{}, {"choices": []}, {"choices": [{"delta": {}}]}, {"choices": [{"delta": {"content": 5}}]}, []],
    )
    def test_missing_delta_is_empty(self, payload):
        """Events without text content yield no delta"""
        assert extract_delta(payload) == ""


@pytest.fixture
def make_channel(backend, cache, queue, monitor, make_functions, clock):
    def factory(handler) -> AssistantChannel:
        return AssistantChannel(
            make_functions(handler),
            backend,
            cache,
            queue,
            monitor,
            user_id="user-1",
            language="en",
            sent_delay=0,
            delivered_delay=0,
            clock=clock,
        )

    return factory


def streaming(body: bytes, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    return handler


class TestAssistantChannel:
    """Test streaming chat"""

    def test_send_streams_reply_and_persists(self, make_channel, backend):
        """The reply is appended, the user message is read and the exchange saved"""
        seen = []
        channel = make_channel(streaming(sse("Use ", "neem oil."), seen))

        async def scenario():
            sent = await channel.send("  How do I treat aphids?  ")
            await channel.aclose()
            return sent

        sent = asyncio.run(scenario())

        assert sent.content == "How do I treat aphids?"
        assert sent.delivery_status == DeliveryStatus.READ
        assert [m.role for m in channel.transcript] == [Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert channel.transcript[-1].content == "Use neem oil."
        [row] = backend.rows(Tables.CHAT)
        assert (row["message_content"], row["response_content"]) == ("How do I treat aphids?", "Use neem oil.")
        assert seen[0]["messages"] == [{"role": "user", "content": "How do I treat aphids?"}]
        assert seen[0]["userId"] == "user-1"

    def test_greeting_is_never_sent(self, make_channel):
        """History sent to the assistant excludes the greeting"""
        seen = []
        channel = make_channel(streaming(sse("Fine."), seen))

        async def scenario():
            await channel.send("first")
            await channel.send("second")

        asyncio.run(scenario())

        assert channel.transcript[0].id == GREETING_ID
        assert [m["content"] for m in seen[1]["messages"]] == ["first", "Fine.", "second"]

    def test_empty_message_is_ignored(self, make_channel, backend):
        """Blank input sends nothing"""
        channel = make_channel(streaming(sse("x")))

        assert asyncio.run(channel.send("   ")) is None
        assert len(channel.transcript) == 1

    def test_overlong_message_is_rejected(self, make_channel):
        """Messages over 5000 characters are refused"""
        channel = make_channel(streaming(sse("x")))

        with pytest.raises(ValidationError):
            asyncio.run(channel.send("a" * 5001))

    @pytest.mark.parametrize(
        "status, error_type, message",
        [
            (429, RateLimitError, "Too many requests. Please wait a moment and try again."),
            (402, QuotaExceededError, "AI service quota exceeded. Please try again later."),
            (500, ServiceError, GENERIC_FAILURE),
        ],
    )
    def test_rejected_request(self, make_channel, backend, status, error_type, message):
        """Rejections mark the user message as error with a readable message"""
        channel = make_channel(lambda request: httpx.Response(status, json={"error": "nope"}))

        with pytest.raises(error_type):
            asyncio.run(channel.send("help"))

        assert channel.error == message
        assert channel.transcript[-1].delivery_status == DeliveryStatus.ERROR
        assert not channel.is_streaming
        assert backend.rows(Tables.CHAT) == []

    def test_cancel_keeps_partial_reply(self, make_channel, backend):
        """Cancelling stops the stream and keeps what arrived"""

        async def scenario():
            release = asyncio.Event()

            async def body():
                yield sse("Partial ", done=False)
                await release.wait()
                yield sse("never")

            channel = make_channel(lambda request: httpx.Response(200, content=body()))
            sending = asyncio.create_task(channel.send("long answer please"))
            for _ in range(200):
                if len(channel.transcript) == 3 and channel.transcript[-1].content:
                    break
                await asyncio.sleep(0)
            cancelled = channel.cancel()
            sent = await sending
            await channel.aclose()
            return channel, cancelled, sent

        channel, cancelled, sent = asyncio.run(scenario())

        assert cancelled
        assert sent is not None
        assert channel.transcript[-1].content == "Partial "
        assert not channel.is_streaming
        assert not channel.cancel()
        assert backend.rows(Tables.CHAT) == []

    def test_connection_lost_mid_stream(self, make_channel, backend):
        """A dropped stream marks the message as error and can be retried"""

        async def body():
            yield sse("Partial ", done=False)
            raise httpx.ReadError("connection reset")

        channel = make_channel(lambda request: httpx.Response(200, content=body()))

        with pytest.raises(TransientNetworkError):
            asyncio.run(channel.send("will this drop?"))

        user_message = next(m for m in channel.transcript if m.role == Role.USER)
        assert user_message.delivery_status == DeliveryStatus.ERROR
        assert channel.error == GENERIC_FAILURE
        assert channel.transcript[-1].content == "Partial "
        assert not channel.is_streaming
        assert backend.rows(Tables.CHAT) == []

    def test_deferred_save_is_queued(self, make_channel, backend, queue):
        """A save that fails on the network is queued for the next sync"""
        backend.fail("insert", TransientNetworkError("insert", "offline"), target=Tables.CHAT)
        channel = make_channel(streaming(sse("Irrigate weekly.")))

        asyncio.run(channel.send("water schedule?"))

        [operation] = queue.list()
        assert (operation.entity_type, operation.action) == (EntityType.CHAT_MESSAGE, OperationAction.CREATE)
        assert operation.payload["response_content"] == "Irrigate weekly."

    def test_retry_last_resends(self, make_channel):
        """Retry replaces the failed message with a new send"""
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(503)
            return httpx.Response(200, content=sse("Recovered."))

        channel = make_channel(handler)

        async def scenario():
            with pytest.raises(ServiceError):
                await channel.send("hello?")
            return await channel.retry_last()

        resent = asyncio.run(scenario())

        assert resent.delivery_status == DeliveryStatus.READ
        assert [m.content for m in channel.transcript[1:]] == ["hello?", "Recovered."]
        assert channel.error is None

    def test_clear_resets_transcript(self, make_channel):
        """Clearing leaves only the cleared greeting"""
        channel = make_channel(streaming(sse("ok")))
        asyncio.run(channel.send("hi"))

        channel.clear()

        assert [m.content for m in channel.transcript] == [CLEARED_MESSAGE]

    def test_load_history_is_chronological(self, make_channel, backend):
        """Saved exchanges are shown oldest first after the greeting"""
        rows = backend.rows(Tables.CHAT)
        rows.append({"id": "c2", "user_id": "user-1", "message_content": "q2", "response_content": "a2", "created_at": "2024-02-01T00:00:00Z"})
        rows.append({"id": "c1", "user_id": "user-1", "message_content": "q1", "response_content": "a1", "created_at": "2024-01-01T00:00:00Z"})
        channel = make_channel(streaming(sse("x")))

        loaded = asyncio.run(channel.load_history())

        assert loaded == 2
        assert [m.content for m in channel.transcript[1:]] == ["q1", "a1", "q2", "a2"]


class TestDeliveryStatus:
    """Test forward-only delivery status"""

    def test_status_never_moves_backwards(self):
        """Later statuses win and error is terminal"""
        message = ChatMessage(id="m", role=Role.USER, content="x", timestamp_ms=0, delivery_status=DeliveryStatus.SENDING)

        assert message.advance(DeliveryStatus.READ)
        assert not message.advance(DeliveryStatus.SENT)
        assert message.advance(DeliveryStatus.ERROR)
        assert not message.advance(DeliveryStatus.READ)
        assert message.delivery_status == DeliveryStatus.ERROR

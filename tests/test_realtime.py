import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from coach_messaging.errors import TransientServiceError
from coach_messaging.models.api.events import (
    MessageInsertedEvent,
    MessagesReadEvent,
    parse_event,
    serialize_event,
)
from coach_messaging.models.api.messages import MessageResponse
from coach_messaging.models.api.session import ConnectionState
from coach_messaging.realtime import (
    InProcessChannel,
    RedisChannel,
    build_channel,
    publish_quietly,
)
from coach_messaging.realtime.redis_channel import topic


def make_message(conversation_id: UUID, text: str = "hi") -> MessageResponse:
    return MessageResponse(
        id=uuid4(),
        conversation_id=conversation_id,
        sender_id="coach-1",
        sender_role="coach",
        text=text,
        created_at=datetime.now(timezone.utc),
    )


class TestEvents:
    def test_parse_discriminates_on_type(self) -> None:
        message = make_message(uuid4())
        read = MessagesReadEvent(
            conversation_id=message.conversation_id,
            reader_role="client",
            message_ids=[message.id],
            read_at=datetime.now(timezone.utc),
        )

        inserted = parse_event(serialize_event(MessageInsertedEvent(message=message)))
        receipt = parse_event(serialize_event(read))

        assert isinstance(inserted, MessageInsertedEvent)
        assert inserted.message == message
        assert isinstance(receipt, MessagesReadEvent)

    def test_parse_rejects_unknown_type(self) -> None:
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            parse_event('{"type": "typing", "conversation_id": "x"}')


class TestInProcessChannel:
    @pytest.mark.asyncio
    async def test_delivers_in_publish_order(self, channel: InProcessChannel) -> None:
        conversation_id = uuid4()
        received: List[str] = []

        async def on_message(message: MessageResponse) -> None:
            # Slow subscriber; order must still hold
            await asyncio.sleep(0)
            received.append(message.text)

        subscription = await channel.subscribe(conversation_id, on_message)
        for text in ["one", "two", "three"]:
            await channel.publish_message(make_message(conversation_id, text))
        await subscription.wait_idle()

        assert received == ["one", "two", "three"]
        await subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_scoped_to_conversation(self, channel: InProcessChannel) -> None:
        handler = AsyncMock()
        subscription = await channel.subscribe(uuid4(), handler)

        await channel.publish_message(make_message(uuid4()))
        await subscription.wait_idle()

        handler.assert_not_called()
        await subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_subscribers_get_independent_copies(
        self, channel: InProcessChannel
    ) -> None:
        conversation_id = uuid4()
        first: List[MessageResponse] = []
        second: List[MessageResponse] = []

        async def collect_first(message: MessageResponse) -> None:
            first.append(message)

        async def collect_second(message: MessageResponse) -> None:
            second.append(message)

        a = await channel.subscribe(conversation_id, collect_first)
        b = await channel.subscribe(conversation_id, collect_second)
        await channel.publish_message(make_message(conversation_id))
        await a.wait_idle()
        await b.wait_idle()

        assert first[0] == second[0]
        assert first[0] is not second[0]
        await a.unsubscribe()
        await b.unsubscribe()

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, channel: InProcessChannel) -> None:
        conversation_id = uuid4()
        handler = AsyncMock()
        states: List[ConnectionState] = []
        subscription = await channel.subscribe(
            conversation_id, handler, on_state_change=states.append
        )

        await subscription.unsubscribe()
        await subscription.unsubscribe()
        await channel.publish_message(make_message(conversation_id))

        assert subscription.closed
        assert channel.subscriber_count(conversation_id) == 0
        assert states == [ConnectionState.DISCONNECTED]
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(
        self, channel: InProcessChannel
    ) -> None:
        conversation_id = uuid4()
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])
        subscription = await channel.subscribe(conversation_id, handler)

        await channel.publish_message(make_message(conversation_id))
        await channel.publish_message(make_message(conversation_id))
        await subscription.wait_idle()

        assert handler.await_count == 2
        await subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_handler_may_unsubscribe_itself(
        self, channel: InProcessChannel
    ) -> None:
        conversation_id = uuid4()
        holder = {}

        async def on_message(message: MessageResponse) -> None:
            await holder["subscription"].unsubscribe()

        holder["subscription"] = await channel.subscribe(conversation_id, on_message)
        await channel.publish_message(make_message(conversation_id))
        await holder["subscription"].wait_idle()

        assert holder["subscription"].closed

    @pytest.mark.asyncio
    async def test_publish_quietly_swallows_transient_errors(self) -> None:
        channel = MagicMock()
        channel.publish = AsyncMock(side_effect=TransientServiceError("down"))

        ok = await publish_quietly(
            channel, MessageInsertedEvent(message=make_message(uuid4()))
        )

        assert ok is False


class FakePubSub:
    """Scripted stand-in for ``redis.asyncio.client.PubSub``."""

    def __init__(self) -> None:
        self.inbox: Deque[Any] = deque()
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def get_message(
        self, ignore_subscribe_messages: bool = False, timeout: float = 0.0
    ) -> Optional[dict]:
        if not self.inbox:
            await asyncio.sleep(0.01)
            return None
        item = self.inbox.popleft()
        if isinstance(item, Exception):
            raise item
        return {"type": "message", "data": item}


class TestRedisChannel:
    @pytest.fixture
    def pubsub(self) -> FakePubSub:
        return FakePubSub()

    @pytest.fixture
    def redis_channel(self, pubsub: FakePubSub) -> RedisChannel:
        channel = RedisChannel("redis://localhost:6379/0", reconnect_delay=0.01)
        channel._redis = MagicMock()
        channel._redis.pubsub.return_value = pubsub
        channel._redis.publish = AsyncMock()
        return channel

    def test_build_channel(self) -> None:
        assert isinstance(build_channel(None), InProcessChannel)
        assert isinstance(build_channel("redis://localhost:6379/0"), RedisChannel)

    @pytest.mark.asyncio
    async def test_publish_uses_conversation_topic(
        self, redis_channel: RedisChannel
    ) -> None:
        message = make_message(uuid4())

        await redis_channel.publish_message(message)

        name, payload = redis_channel._redis.publish.call_args.args
        assert name == f"conversation:{message.conversation_id}"
        assert parse_event(payload).message == message

    @pytest.mark.asyncio
    async def test_publish_failure_is_transient(
        self, redis_channel: RedisChannel
    ) -> None:
        redis_channel._redis.publish.side_effect = RedisConnectionError("refused")

        with pytest.raises(TransientServiceError):
            await redis_channel.publish_message(make_message(uuid4()))

    @pytest.mark.asyncio
    async def test_subscribe_failure_is_transient(
        self, redis_channel: RedisChannel, pubsub: FakePubSub
    ) -> None:
        pubsub.subscribe.side_effect = RedisConnectionError("refused")

        with pytest.raises(TransientServiceError):
            await redis_channel.subscribe(uuid4(), AsyncMock())

        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delivers_valid_payloads_only(
        self, redis_channel: RedisChannel, pubsub: FakePubSub
    ) -> None:
        conversation_id = uuid4()
        good = make_message(conversation_id, "valid")
        pubsub.inbox.extend(
            [
                "not json",
                serialize_event(MessageInsertedEvent(message=make_message(uuid4()))),
                serialize_event(MessageInsertedEvent(message=good)),
            ]
        )
        delivered = asyncio.Event()
        received: List[MessageResponse] = []

        async def on_message(message: MessageResponse) -> None:
            received.append(message)
            delivered.set()

        subscription = await redis_channel.subscribe(conversation_id, on_message)
        await asyncio.wait_for(delivered.wait(), timeout=2)
        await subscription.unsubscribe()

        assert [m.id for m in received] == [good.id]
        pubsub.subscribe.assert_awaited_with(topic(conversation_id))
        pubsub.unsubscribe.assert_awaited_once_with(topic(conversation_id))
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reconnect_notifies_subscriber(
        self, redis_channel: RedisChannel, pubsub: FakePubSub
    ) -> None:
        pubsub.inbox.append(RedisConnectionError("connection reset"))
        states: List[ConnectionState] = []
        reconnected = asyncio.Event()

        async def on_reconnect() -> None:
            reconnected.set()

        subscription = await redis_channel.subscribe(
            uuid4(),
            AsyncMock(),
            on_reconnect=on_reconnect,
            on_state_change=states.append,
        )
        await asyncio.wait_for(reconnected.wait(), timeout=2)

        assert states == [ConnectionState.DISCONNECTED, ConnectionState.CONNECTED]
        assert subscription.state == ConnectionState.CONNECTED
        await subscription.unsubscribe()

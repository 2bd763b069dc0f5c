import asyncio
import logging
from typing import Optional
from uuid import UUID

import redis.asyncio as redis
from pydantic import ValidationError as PayloadValidationError
from redis.exceptions import RedisError

from coach_messaging.errors import TransientServiceError
from coach_messaging.models.api.events import parse_event, serialize_event
from coach_messaging.models.api.session import ConnectionState
from coach_messaging.realtime.base import (
    Event,
    MessageHandler,
    ReadHandler,
    RealtimeChannel,
    ReconnectHandler,
    StateHandler,
    Subscription,
)

logger = logging.getLogger(__name__)


def topic(conversation_id: UUID) -> str:
    return f"conversation:{conversation_id}"


class RedisChannel(RealtimeChannel):
    """Redis pub/sub transport; one topic per conversation."""

    def __init__(self, url: str, reconnect_delay: float = 1.0):
        self._redis = redis.from_url(url)
        self.reconnect_delay = reconnect_delay

    async def close(self) -> None:
        await self._redis.aclose()

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False

    async def publish(self, event: Event) -> None:
        try:
            await self._redis.publish(
                topic(event.conversation_id), serialize_event(event)
            )
        except (RedisError, OSError) as e:
            raise TransientServiceError(f"Realtime publish failed: {e}") from e

    async def subscribe(
        self,
        conversation_id: UUID,
        on_message: MessageHandler,
        on_read: Optional[ReadHandler] = None,
        on_reconnect: Optional[ReconnectHandler] = None,
        on_state_change: Optional[StateHandler] = None,
    ) -> Subscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic(conversation_id))
        except (RedisError, OSError) as e:
            await pubsub.aclose()
            raise TransientServiceError(f"Realtime subscribe failed: {e}") from e

        subscription = Subscription(
            conversation_id,
            on_message,
            on_read=on_read,
            on_reconnect=on_reconnect,
            on_state_change=on_state_change,
        )
        reader = asyncio.create_task(self._read(pubsub, subscription))

        async def _teardown() -> None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            try:
                await pubsub.unsubscribe(topic(conversation_id))
            except (RedisError, OSError):
                logger.debug("Unsubscribe from %s failed", conversation_id)
            await pubsub.aclose()

        subscription.add_close_callback(_teardown)
        return subscription

    async def _read(
        self, pubsub: "redis.client.PubSub", subscription: Subscription
    ) -> None:
        channel_name = topic(subscription.conversation_id)
        while not subscription.closed:
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except (RedisError, OSError) as e:
                logger.warning("Realtime connection lost for %s: %s", channel_name, e)
                subscription.set_state(ConnectionState.DISCONNECTED)
                await asyncio.sleep(self.reconnect_delay)
                await self._resubscribe(pubsub, subscription)
                continue

            if not message or message.get("type") != "message":
                continue

            try:
                event = parse_event(message["data"])
            except PayloadValidationError as e:
                logger.warning("Dropping malformed payload on %s: %s", channel_name, e)
                continue

            if event.conversation_id != subscription.conversation_id:
                logger.warning(
                    "Dropping payload for wrong conversation on %s", channel_name
                )
                continue

            subscription.enqueue(event)

    async def _resubscribe(
        self, pubsub: "redis.client.PubSub", subscription: Subscription
    ) -> None:
        try:
            await pubsub.subscribe(topic(subscription.conversation_id))
        except (RedisError, OSError) as e:
            logger.warning("Realtime reconnect failed: %s", e)
            return
        logger.info(
            "Realtime connection restored for %s", subscription.conversation_id
        )
        subscription.set_state(ConnectionState.CONNECTED)
        subscription.notify_reconnected()

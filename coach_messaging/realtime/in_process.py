from typing import Dict, List, Optional
from uuid import UUID

from coach_messaging.realtime.base import (
    Event,
    MessageHandler,
    ReadHandler,
    RealtimeChannel,
    ReconnectHandler,
    StateHandler,
    Subscription,
)


class InProcessChannel(RealtimeChannel):
    """Broadcasts events to the subscriptions registered in this process."""

    def __init__(self) -> None:
        self._subscriptions: Dict[UUID, List[Subscription]] = {}

    def subscriber_count(self, conversation_id: UUID) -> int:
        return len(self._subscriptions.get(conversation_id, []))

    async def publish(self, event: Event) -> None:
        for subscription in list(self._subscriptions.get(event.conversation_id, [])):
            # Each subscriber gets its own copy to mutate
            subscription.enqueue(event.model_copy(deep=True))

    async def subscribe(
        self,
        conversation_id: UUID,
        on_message: MessageHandler,
        on_read: Optional[ReadHandler] = None,
        on_reconnect: Optional[ReconnectHandler] = None,
        on_state_change: Optional[StateHandler] = None,
    ) -> Subscription:
        subscription = Subscription(
            conversation_id,
            on_message,
            on_read=on_read,
            on_reconnect=on_reconnect,
            on_state_change=on_state_change,
        )
        self._subscriptions.setdefault(conversation_id, []).append(subscription)

        async def _detach() -> None:
            self._unsubscribe(subscription)

        subscription.add_close_callback(_detach)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.conversation_id)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.conversation_id, None)

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Union
from uuid import UUID

from coach_messaging.models.api.events import MessageInsertedEvent, MessagesReadEvent
from coach_messaging.models.api.messages import MessageResponse
from coach_messaging.errors import TransientServiceError
from coach_messaging.models.api.session import ConnectionState

logger = logging.getLogger(__name__)

Event = Union[MessageInsertedEvent, MessagesReadEvent]
MessageHandler = Callable[[MessageResponse], Awaitable[None]]
ReadHandler = Callable[[MessagesReadEvent], Awaitable[None]]
ReconnectHandler = Callable[[], Awaitable[None]]
StateHandler = Callable[[ConnectionState], None]
CloseCallback = Callable[[], Awaitable[None]]

# Queued after a transport reconnect so it is handled in delivery order
_RECONNECTED = object()


class Subscription:
    """A live registration for one conversation.

    Events are queued and handed to the callbacks one at a time by a pump
    task, so a subscriber sees a conversation's events in publish order and a
    slow subscriber never blocks the publisher.
    """

    def __init__(
        self,
        conversation_id: UUID,
        on_message: MessageHandler,
        on_read: Optional[ReadHandler] = None,
        on_reconnect: Optional[ReconnectHandler] = None,
        on_state_change: Optional[StateHandler] = None,
    ):
        self.conversation_id = conversation_id
        self.state = ConnectionState.CONNECTED
        self._on_message = on_message
        self._on_read = on_read
        self._on_reconnect = on_reconnect
        self._on_state_change = on_state_change
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._close_callbacks: List[CloseCallback] = []
        self._closed = False
        self._task = asyncio.create_task(self._pump())

    @property
    def closed(self) -> bool:
        return self._closed

    def add_close_callback(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    def enqueue(self, event: Event) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def notify_reconnected(self) -> None:
        if not self._closed:
            self._queue.put_nowait(_RECONNECTED)

    def set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    async def wait_idle(self) -> None:
        """Wait until every queued event has been handed to the callbacks."""
        await self._queue.join()

    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.set_state(ConnectionState.DISCONNECTED)

        for callback in self._close_callbacks:
            await callback()

        # A handler may close its own subscription; the pump exits on its own
        if asyncio.current_task() is not self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _pump(self) -> None:
        while not self._closed:
            item = await self._queue.get()
            try:
                if not self._closed:
                    await self._dispatch(item)
            except Exception:
                logger.exception(
                    "Subscriber callback failed for conversation %s",
                    self.conversation_id,
                )
            finally:
                self._queue.task_done()

    async def _dispatch(self, item: object) -> None:
        if item is _RECONNECTED:
            if self._on_reconnect is not None:
                await self._on_reconnect()
        elif isinstance(item, MessageInsertedEvent):
            await self._on_message(item.message)
        elif isinstance(item, MessagesReadEvent) and self._on_read is not None:
            await self._on_read(item)


class RealtimeChannel(ABC):
    """Fans out message events to the subscribers of a conversation.

    Delivery is at-least-once while connected; nothing is replayed across a
    disconnect, so subscribers re-fetch history when told they reconnected.
    """

    async def start(self) -> None:
        """Open transport resources."""

    async def close(self) -> None:
        """Release transport resources."""

    async def ping(self) -> bool:
        """Whether the transport is reachable."""
        return True

    @abstractmethod
    async def publish(self, event: Event) -> None:
        """Publish an event to the conversation it belongs to."""

    @abstractmethod
    async def subscribe(
        self,
        conversation_id: UUID,
        on_message: MessageHandler,
        on_read: Optional[ReadHandler] = None,
        on_reconnect: Optional[ReconnectHandler] = None,
        on_state_change: Optional[StateHandler] = None,
    ) -> Subscription:
        """Register callbacks for a conversation's events."""

    async def publish_message(self, message: MessageResponse) -> None:
        await self.publish(MessageInsertedEvent(message=message))


async def publish_quietly(channel: RealtimeChannel, event: Event) -> bool:
    """Publish after a committed write; a broker outage must not fail the write."""
    try:
        await channel.publish(event)
    except TransientServiceError as e:
        logger.warning(
            "Publishing %s for conversation %s failed: %s",
            event.type,
            event.conversation_id,
            e,
        )
        return False
    return True

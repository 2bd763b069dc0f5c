"""One participant's live view of one conversation.

The session loads history, subscribes to realtime delivery, marks the other
party's messages read and sends on the participant's behalf. When the backend
is unreachable while opening, it switches to a local demo conversation instead
of failing.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union
from uuid import NAMESPACE_URL, UUID, uuid4, uuid5

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coach_messaging.clients.profile_client import ProfileClient
from coach_messaging.errors import (
    DuplicateDeliveryError,
    MessagingError,
    TransientServiceError,
    ValidationError,
)
from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.events import MessagesReadEvent
from coach_messaging.models.api.messages import (
    AttachmentUpload,
    CounterpartRole,
    MessageResponse,
    Role,
)
from coach_messaging.models.api.participants import ParticipantResponse
from coach_messaging.models.api.session import (
    ConnectionState,
    SessionSnapshot,
    SessionState,
)
from coach_messaging.realtime.base import RealtimeChannel, Subscription
from coach_messaging.repositories.base_repository import as_uuid
from coach_messaging.services.attachment_service import AttachmentPipeline
from coach_messaging.services.bootstrap_conversation_service import (
    BootstrapConversationService,
)
from coach_messaging.services.message_buffer import LocalMessageBuffer
from coach_messaging.services.message_store_service import MessageStoreService
from coach_messaging.services.read_receipt_service import ReadReceiptTracker
from coach_messaging.services.send_message_service import SendMessageService

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Union[None, Awaitable[None]]]

DEMO_CONVERSATION_ID = uuid5(NAMESPACE_URL, "demo-conversation")
DEMO_GREETING_ID = uuid5(NAMESPACE_URL, "demo-conversation/greeting")
DEMO_COACH = ParticipantResponse(
    id="demo-coach",
    display_name="Sarah Johnson",
    title="Personal Fitness Coach",
    avatar_ref="https://randomuser.me/api/portraits/women/44.jpg",
)
DEMO_GREETING = (
    "Hi! I'm Sarah, your personal fitness coach. How can I help you today?"
)


def demo_history(now: Optional[datetime] = None) -> List[MessageResponse]:
    """The canned conversation shown while the backend is unreachable."""
    now = now or datetime.now(timezone.utc)
    sent_at = now - timedelta(hours=24)
    return [
        MessageResponse(
            id=DEMO_GREETING_ID,
            conversation_id=DEMO_CONVERSATION_ID,
            sender_id=DEMO_COACH.id,
            sender_role="coach",
            text=DEMO_GREETING,
            created_at=sent_at,
            read_at=sent_at,
        )
    ]


class ConversationSession:
    """Composes bootstrap, history, realtime delivery, sending and read receipts.

    Every store interaction opens its own database session from
    ``session_factory`` so an in-flight send never holds up inbound events.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: RealtimeChannel,
        user_id: str,
        role: Role,
        attachments: Optional[AttachmentPipeline] = None,
        profiles: Optional[ProfileClient] = None,
        on_directory_refresh: Optional[RefreshCallback] = None,
    ):
        self.session_factory = session_factory
        self.channel = channel
        self.user_id = user_id
        self.role = role
        self.attachments = attachments
        self.profiles = profiles
        self.on_directory_refresh = on_directory_refresh

        self.state = SessionState.LOADING
        self.connection = ConnectionState.DISCONNECTED
        self.conversation_id: Optional[UUID] = None
        self.conversation: Optional[ConversationResponse] = None
        self.participant: Optional[ParticipantResponse] = None
        self.active = False

        self._buffer = LocalMessageBuffer()
        self._subscription: Optional[Subscription] = None
        self._sends_in_flight = 0
        self._listeners: List["asyncio.Queue[Optional[SessionSnapshot]]"] = []

    async def __aenter__(self) -> "ConversationSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def messages(self) -> List[MessageResponse]:
        return self._buffer.as_list()

    @property
    def unread_count(self) -> int:
        return self._buffer.unread_count(self.role)

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def degraded(self) -> bool:
        return self.state == SessionState.DEGRADED

    async def open(
        self,
        conversation_id: Optional[Union[str, UUID]] = None,
        counterpart_id: Optional[str] = None,
        counterpart_role: CounterpartRole = "coach",
        counterpart_name: Optional[str] = None,
    ) -> "ConversationSession":
        """
        Activate the session:

        1. Bootstrap the conversation when no id is given
        2. Load history
        3. Subscribe to realtime delivery
        4. Mark the other party's messages read
        5. Fetch the counterpart profile

        A backend outage in steps 1-4 switches the session to demo mode.
        """
        if conversation_id is None and counterpart_id is None:
            raise ValidationError("conversation_id or counterpart_id is required")

        self._set_state(SessionState.LOADING)
        try:
            # Step 1: Bootstrap
            if conversation_id is None:
                conversation_id = await self._bootstrap(
                    counterpart_id, counterpart_role, counterpart_name
                )
            self.conversation_id = as_uuid(conversation_id)

            # Step 2: History
            await self._load_history()

            # Step 3: Subscribe
            self._subscription = await self.channel.subscribe(
                self.conversation_id,
                self._on_message,
                on_read=self._on_read,
                on_reconnect=self._on_reconnect,
                on_state_change=self._on_connection_change,
            )
            self.connection = ConnectionState.CONNECTED
            self.active = True

            # Step 4: Read receipts
            await self._mark_read()
        except TransientServiceError as e:
            logger.warning(
                "Messaging backend unavailable, showing demo conversation: %s", e
            )
            await self._enter_degraded()
            return self

        self._set_state(SessionState.READY)

        # Step 5: Counterpart profile
        await self._load_participant()
        return self

    async def send(
        self, text: str = "", attachment: Optional[AttachmentUpload] = None
    ) -> MessageResponse:
        """Send as this session's participant.

        ``ValidationError`` and ``UploadError`` reach the caller. A backend
        outage is logged and answered with a local-only copy of the message.
        """
        if self.conversation_id is None or self.closed:
            raise ValidationError("Conversation session is not open")
        text = (text or "").strip()
        if not text and attachment is None:
            raise ValidationError("Message needs text or an attachment")

        if self.degraded:
            return self._keep_locally(text, attachment)

        self._sends_in_flight += 1
        self._set_state(SessionState.SENDING)
        try:
            async with self.session_factory() as db:
                service = SendMessageService(db, self.channel, self.attachments)
                message = await service.send_message(
                    self.conversation_id,
                    self.user_id,
                    self.role,
                    text,
                    attachment=attachment,
                )
        except TransientServiceError as e:
            logger.warning(
                "Send to %s failed, keeping message locally: %s",
                self.conversation_id,
                e,
            )
            message = self._keep_locally(text, attachment)
        else:
            if not self.closed:
                self._accept(message)
        finally:
            self._sends_in_flight -= 1
            if not self._sends_in_flight and self.state == SessionState.SENDING:
                self._set_state(SessionState.READY)
        return message

    async def mark_read(self) -> int:
        """Mark the other party's messages read now."""
        if self.conversation_id is None or self.degraded or self.closed:
            return 0
        return await self._mark_read()

    async def activate(self) -> None:
        """The participant is looking at this conversation again."""
        self.active = True
        if self.state in (SessionState.READY, SessionState.SENDING):
            try:
                await self._mark_read()
            except TransientServiceError as e:
                logger.warning("Mark read on activation failed: %s", e)

    def deactivate(self) -> None:
        self.active = False

    async def close(self) -> None:
        """Stop delivery. Sends still in flight complete but are not merged."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        self.active = False
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
        self.connection = ConnectionState.DISCONNECTED
        for listener in list(self._listeners):
            listener.put_nowait(None)
        logger.debug(
            "Closed session for %s on %s", self.user_id, self.conversation_id
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            conversation_id=self.conversation_id,
            role=self.role,
            state=self.state,
            connection=self.connection,
            messages=self.messages,
            unread_count=self.unread_count,
            participant=self.participant,
        )

    async def updates(self) -> AsyncIterator[SessionSnapshot]:
        """Yield the current snapshot, then one per change until closed."""
        listener: "asyncio.Queue[Optional[SessionSnapshot]]" = asyncio.Queue()
        self._listeners.append(listener)
        try:
            yield self.snapshot()
            while not self.closed:
                snapshot = await listener.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            self._listeners.remove(listener)

    async def _bootstrap(
        self,
        counterpart_id: Optional[str],
        counterpart_role: CounterpartRole,
        counterpart_name: Optional[str],
    ) -> UUID:
        if self.role == "client":
            client_id, staff_id, staff_role = (
                self.user_id,
                counterpart_id,
                counterpart_role,
            )
        else:
            # Staff open conversations with a client; the welcome is theirs
            client_id, staff_id, staff_role = counterpart_id, self.user_id, self.role
        async with self.session_factory() as db:
            service = BootstrapConversationService(db, self.channel)
            return await service.find_or_create(
                client_id, staff_id, staff_role, counterpart_name
            )

    async def _load_history(self) -> None:
        async with self.session_factory() as db:
            store = MessageStoreService(db, self.channel)
            self.conversation = await store.get_conversation(self.conversation_id)
            history = await store.list_by_conversation(self.conversation_id)
        added = self._buffer.merge(history)
        logger.debug(
            "Loaded %d message(s) for %s (%d new)",
            len(history),
            self.conversation_id,
            added,
        )
        self._notify()

    async def _load_participant(self) -> None:
        if self.profiles is None or self.conversation is None:
            return
        if self.role == "client":
            other_id = self.conversation.counterpart_id
        else:
            other_id = self.conversation.client_id
        try:
            self.participant = await self.profiles.get_participant(other_id)
        except MessagingError as e:
            logger.warning("Profile lookup for %s failed: %s", other_id, e)
            return
        self._notify()

    async def _mark_read(self) -> int:
        async with self.session_factory() as db:
            tracker = ReadReceiptTracker(
                MessageStoreService(db, self.channel),
                on_directory_refresh=self.on_directory_refresh,
            )
            updated = await tracker.mark_conversation_read(
                self.conversation_id, self.role, local_messages=self._buffer
            )
        self._notify()
        return updated

    async def _enter_degraded(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()

        self.conversation_id = DEMO_CONVERSATION_ID
        self.conversation = None
        self.participant = DEMO_COACH.model_copy(
            update={"last_seen_at": datetime.now(timezone.utc)}
        )
        self.connection = ConnectionState.DISCONNECTED
        self.active = True
        self._buffer = LocalMessageBuffer(demo_history())
        self._set_state(SessionState.DEGRADED)

    def _keep_locally(
        self, text: str, attachment: Optional[AttachmentUpload]
    ) -> MessageResponse:
        """Synthesize an unsent message so the participant still sees it."""
        message = MessageResponse(
            id=uuid4(),
            conversation_id=self.conversation_id,
            sender_id=self.user_id,
            sender_role=self.role,
            # Nothing was stored, so an attachment-only send shows its name
            text=text or (attachment.filename if attachment else ""),
            created_at=datetime.now(timezone.utc),
        )
        if not self.closed:
            self._accept(message)
        return message

    def _accept(self, message: MessageResponse) -> bool:
        try:
            self._buffer.add(message)
        except DuplicateDeliveryError:
            logger.debug("Dropping duplicate delivery of message %s", message.id)
            return False
        self._notify()
        return True

    async def _on_message(self, message: MessageResponse) -> None:
        if self.closed or message.conversation_id != self.conversation_id:
            return
        if not self._accept(message):
            return
        if (
            message.sender_role != self.role
            and self.active
            and self.state in (SessionState.READY, SessionState.SENDING)
        ):
            try:
                await self._mark_read()
            except TransientServiceError as e:
                logger.warning("Mark read after delivery failed: %s", e)

    async def _on_read(self, receipt: MessagesReadEvent) -> None:
        if self.closed or receipt.conversation_id != self.conversation_id:
            return
        if self._buffer.mark_read(receipt.message_ids, receipt.read_at):
            self._notify()

    async def _on_reconnect(self) -> None:
        if self.closed or self.degraded:
            return
        logger.info(
            "Realtime reconnected for %s, re-fetching history", self.conversation_id
        )
        try:
            await self._load_history()
        except TransientServiceError as e:
            logger.warning("History re-fetch after reconnect failed: %s", e)

    def _on_connection_change(self, state: ConnectionState) -> None:
        if self.closed:
            return
        self.connection = state
        self._notify()

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener.put_nowait(snapshot)

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.database import translate_db_errors
from coach_messaging.errors import NotFoundError, ValidationError
from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.events import MessageInsertedEvent, MessagesReadEvent
from coach_messaging.models.api.messages import (
    AttachmentReference,
    MessageResponse,
    NewMessage,
    Role,
)
from coach_messaging.realtime.base import RealtimeChannel, publish_quietly
from coach_messaging.repositories.base_repository import as_uuid
from coach_messaging.repositories.conversation_repository import ConversationRepository
from coach_messaging.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)


class MessageStoreService:
    """Durable, ordered message log per conversation.

    Every committed write is announced on the realtime channel afterwards;
    a failed announcement is logged and never undoes the write.
    """

    def __init__(self, db: AsyncSession, channel: RealtimeChannel):
        self.db = db
        self.channel = channel
        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)

    async def get_conversation(self, conversation_id: UUID) -> ConversationResponse:
        with translate_db_errors("Conversation lookup"):
            conversation = await self.conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    async def append(
        self,
        conversation_id: UUID,
        sender_id: str,
        sender_role: Role,
        text: str,
        attachment: Optional[AttachmentReference] = None,
    ) -> MessageResponse:
        """
        Append a message to a conversation:

        1. Validate content (no database access for rejected input)
        2. Verify conversation exists
        3. Persist with a store-assigned id and timestamp
        4. Publish the stored message
        """
        # Step 1: Validate
        try:
            request = NewMessage(
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_role=sender_role,
                text=(text or "").strip(),
                attachment=attachment,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e
        if not request.has_content:
            raise ValidationError("Message needs text or an attachment")

        # Step 2: Verify conversation exists
        await self.get_conversation(request.conversation_id)

        # Step 3: Persist
        message = MessageResponse(
            id=uuid4(),
            conversation_id=request.conversation_id,
            sender_id=request.sender_id,
            sender_role=request.sender_role,
            text=request.text,
            created_at=datetime.now(timezone.utc),
            attachment_url=request.attachment.url if request.attachment else None,
            attachment_name=(
                request.attachment.filename if request.attachment else None
            ),
        )
        with translate_db_errors("Message append"):
            stored = await self.message_repo.create(message)

        # Step 4: Publish
        await publish_quietly(self.channel, MessageInsertedEvent(message=stored))
        return stored

    async def list_by_conversation(
        self,
        conversation_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[MessageResponse]:
        """Messages of a conversation in ``(created_at, id)`` order.

        Unbounded unless ``limit`` is given.
        """
        if limit is not None and (limit <= 0 or limit > 1000):
            raise ValidationError("Limit must be between 1 and 1000")
        if offset < 0:
            raise ValidationError("Offset must be non-negative")

        await self.get_conversation(conversation_id)
        with translate_db_errors("Message history"):
            return await self.message_repo.get_by_conversation(
                as_uuid(conversation_id), limit=limit, offset=offset
            )

    async def mark_read(self, conversation_id: UUID, reader_role: Role) -> int:
        """Mark the other party's unread messages as read; returns rows updated."""
        updated, _ = await self.mark_read_receipt(conversation_id, reader_role)
        return updated

    async def mark_read_receipt(
        self, conversation_id: UUID, reader_role: Role
    ) -> Tuple[int, Optional[MessagesReadEvent]]:
        """Like ``mark_read``, also returning the published receipt, if any."""
        read_at = datetime.now(timezone.utc)
        with translate_db_errors("Mark read"):
            updated, message_ids = await self.message_repo.mark_read(
                as_uuid(conversation_id), reader_role, read_at
            )
        if not updated:
            return 0, None

        receipt = MessagesReadEvent(
            conversation_id=as_uuid(conversation_id),
            reader_role=reader_role,
            message_ids=message_ids,
            read_at=read_at,
        )
        logger.debug(
            "Marked %d message(s) read in %s for %s",
            updated,
            conversation_id,
            reader_role,
        )
        await publish_quietly(self.channel, receipt)
        return updated, receipt

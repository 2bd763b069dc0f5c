from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.errors import UploadError, ValidationError
from coach_messaging.models.api.messages import (
    AttachmentReference,
    AttachmentUpload,
    MessageResponse,
    Role,
)
from coach_messaging.realtime.base import RealtimeChannel
from coach_messaging.services.attachment_service import AttachmentPipeline
from coach_messaging.services.message_store_service import MessageStoreService


class SendMessageService:
    """Service for sending a message, optionally with an attachment."""

    def __init__(
        self,
        db: AsyncSession,
        channel: RealtimeChannel,
        attachments: Optional[AttachmentPipeline] = None,
    ):
        self.db = db
        self.store = MessageStoreService(db, channel)
        self.attachments = attachments

    async def send_message(
        self,
        conversation_id: UUID,
        sender_id: str,
        sender_role: Role,
        text: str = "",
        attachment: Optional[AttachmentUpload] = None,
    ) -> MessageResponse:
        """
        Main business logic for sending a message:
        1. Reject empty messages
        2. Verify the conversation exists
        3. Upload the attachment; a failed upload aborts the send
        4. Append to the store, which publishes the message
        """
        # Step 1: Validate
        text = (text or "").strip()
        if not text and attachment is None:
            raise ValidationError("Message needs text or an attachment")

        # Step 2: Verify conversation exists
        await self.store.get_conversation(conversation_id)

        # Step 3: Upload
        reference: Optional[AttachmentReference] = None
        if attachment is not None:
            if self.attachments is None:
                raise UploadError("Attachment storage is not configured")
            reference = await self.attachments.upload(
                conversation_id,
                attachment.filename,
                attachment.content,
                attachment.content_type,
            )

        # Step 4: Append
        return await self.store.append(
            conversation_id, sender_id, sender_role, text, attachment=reference
        )

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.database import db_session
from coach_messaging.dependencies import (
    get_attachment_pipeline,
    get_channel,
    to_http_exception,
)
from coach_messaging.errors import MessagingError
from coach_messaging.identity import CallerIdentity, get_caller
from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.messages import AttachmentUpload, MessageResponse
from coach_messaging.realtime.base import RealtimeChannel
from coach_messaging.routers.conversations import get_accessible_conversation
from coach_messaging.services.attachment_service import AttachmentPipeline
from coach_messaging.services.send_message_service import SendMessageService

router = APIRouter()


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
async def send_message(
    conversation: ConversationResponse = Depends(get_accessible_conversation),
    text: str = Form("", description="Message text; may be empty with a file"),
    file: Optional[UploadFile] = File(None, description="Optional attachment"),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
    channel: RealtimeChannel = Depends(get_channel),
    attachments: AttachmentPipeline = Depends(get_attachment_pipeline),
) -> MessageResponse:
    """
    Send a message as the caller, optionally with one attachment.

    The attachment is uploaded first; if the upload fails nothing is stored
    and the response is 502.
    """
    attachment = None
    if file is not None and file.filename:
        attachment = AttachmentUpload(
            filename=file.filename,
            content=await file.read(),
            content_type=file.content_type or "application/octet-stream",
        )

    try:
        service = SendMessageService(db, channel, attachments)
        return await service.send_message(
            conversation.id,
            caller.user_id,
            caller.role,
            text,
            attachment=attachment,
        )
    except MessagingError as e:
        raise to_http_exception(e)

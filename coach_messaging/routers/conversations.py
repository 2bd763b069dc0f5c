import asyncio
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coach_messaging.clients.profile_client import ProfileClient
from coach_messaging.database import db_session, get_session_factory
from coach_messaging.dependencies import (
    get_attachment_pipeline,
    get_channel,
    get_profile_client,
    to_http_exception,
)
from coach_messaging.errors import MessagingError, NotFoundError, TransientServiceError
from coach_messaging.identity import CallerIdentity, get_caller
from coach_messaging.models.api.conversations import (
    BootstrapConversationRequest,
    BootstrapConversationResponse,
    ConversationResponse,
    ConversationSummary,
)
from coach_messaging.models.api.messages import MarkReadResponse, MessageResponse
from coach_messaging.realtime.base import RealtimeChannel
from coach_messaging.services.attachment_service import AttachmentPipeline
from coach_messaging.services.bootstrap_conversation_service import (
    BootstrapConversationService,
)
from coach_messaging.services.conversation_session import ConversationSession
from coach_messaging.services.list_conversations_service import (
    ListConversationsService,
)
from coach_messaging.services.message_store_service import MessageStoreService
from coach_messaging.services.read_receipt_service import ReadReceiptTracker

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_accessible_conversation(
    conversation_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
    channel: RealtimeChannel = Depends(get_channel),
) -> ConversationResponse:
    """Load a conversation the caller takes part in (404 otherwise)."""
    try:
        conversation = await MessageStoreService(db, channel).get_conversation(
            conversation_id
        )
    except MessagingError as e:
        raise to_http_exception(e)
    if not caller.can_access(conversation):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("", response_model=BootstrapConversationResponse)
async def bootstrap_conversation(
    request: BootstrapConversationRequest,
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
    channel: RealtimeChannel = Depends(get_channel),
) -> BootstrapConversationResponse:
    """
    Find or create the conversation between a client and a coach or admin.

    The first call for a pair also seeds a welcome message from the
    counterpart.
    """
    if (caller.role == "client" and request.client_id != caller.user_id) or (
        caller.role == "coach" and request.counterpart_id != caller.user_id
    ):
        raise HTTPException(
            status_code=403, detail="Callers may only bootstrap their own conversations"
        )

    try:
        service = BootstrapConversationService(db, channel)
        conversation_id = await service.find_or_create(
            request.client_id,
            request.counterpart_id,
            counterpart_role=request.counterpart_role,
            counterpart_name=request.counterpart_name,
        )
    except MessagingError as e:
        raise to_http_exception(e)
    return BootstrapConversationResponse(conversation_id=conversation_id)


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
) -> List[ConversationSummary]:
    """
    List the caller's conversations, most recent activity first.

    Each entry carries the latest message and the number of unread messages
    from the other party.
    """
    try:
        service = ListConversationsService(db)
        return await service.list_conversations(caller.user_id, caller.role)
    except MessagingError as e:
        raise to_http_exception(e)


@router.get("/{conversation_id}", response_model=ConversationSummary)
async def get_conversation(
    conversation: ConversationResponse = Depends(get_accessible_conversation),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
) -> ConversationSummary:
    """
    Get the directory entry of a specific conversation.

    Path parameters:
    - conversation_id: UUID of the conversation
    """
    try:
        service = ListConversationsService(db)
        return await service.get_conversation_summary(conversation.id, caller.role)
    except MessagingError as e:
        raise to_http_exception(e)


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def get_conversation_messages(
    conversation: ConversationResponse = Depends(get_accessible_conversation),
    limit: Optional[int] = Query(
        None, description="Maximum number of messages to return", ge=1, le=1000
    ),
    offset: int = Query(0, description="Number of messages to skip", ge=0),
    db: AsyncSession = Depends(db_session),
    channel: RealtimeChannel = Depends(get_channel),
) -> List[MessageResponse]:
    """
    Get the messages of a conversation, oldest first.

    Query parameters:
    - limit: Maximum number of messages to return (default: all, max: 1000)
    - offset: Number of messages to skip (default: 0)
    """
    try:
        store = MessageStoreService(db, channel)
        return await store.list_by_conversation(
            conversation.id, limit=limit, offset=offset
        )
    except MessagingError as e:
        raise to_http_exception(e)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation: ConversationResponse = Depends(get_accessible_conversation),
    caller: CallerIdentity = Depends(get_caller),
    db: AsyncSession = Depends(db_session),
    channel: RealtimeChannel = Depends(get_channel),
) -> MarkReadResponse:
    """Mark every message from the other party as read for the caller's role."""
    try:
        tracker = ReadReceiptTracker(MessageStoreService(db, channel))
        updated = await tracker.mark_conversation_read(conversation.id, caller.role)
    except MessagingError as e:
        raise to_http_exception(e)
    return MarkReadResponse(updated=updated)


@router.websocket("/{conversation_id}/stream")
async def stream_conversation(
    websocket: WebSocket,
    conversation_id: UUID,
    caller: CallerIdentity = Depends(get_caller),
    channel: RealtimeChannel = Depends(get_channel),
    attachments: AttachmentPipeline = Depends(get_attachment_pipeline),
    profiles: Optional[ProfileClient] = Depends(get_profile_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> None:
    """
    Live view of a conversation.

    Server frames are session snapshots (messages, unread count, connection
    state). Client frames:
    - {"type": "send", "text": "..."}
    - {"type": "read"}
    - {"type": "activate"} / {"type": "deactivate"}
    """
    # Short-lived session: a stream must not hold a pooled connection
    try:
        async with session_factory() as db:
            conversation = await MessageStoreService(db, channel).get_conversation(
                conversation_id
            )
    except NotFoundError:
        await websocket.close(code=4404)
        return
    except TransientServiceError:
        # The session below falls back to its demo conversation
        conversation = None
    if conversation is not None and not caller.can_access(conversation):
        await websocket.close(code=4403)
        return

    await websocket.accept()
    session = ConversationSession(
        session_factory,
        channel,
        caller.user_id,
        caller.role,
        attachments=attachments,
        profiles=profiles,
    )
    await session.open(conversation_id=conversation_id)
    pusher = asyncio.create_task(_push_snapshots(websocket, session))

    try:
        while True:
            frame = await websocket.receive_json()
            await _handle_frame(websocket, session, frame)
    except WebSocketDisconnect:
        logger.debug("Stream for %s closed by %s", conversation_id, caller.user_id)
    finally:
        await session.close()
        pusher.cancel()
        try:
            await pusher
        except (asyncio.CancelledError, RuntimeError, WebSocketDisconnect):
            pass


async def _push_snapshots(websocket: WebSocket, session: ConversationSession) -> None:
    async for snapshot in session.updates():
        await websocket.send_text(snapshot.model_dump_json())


async def _handle_frame(
    websocket: WebSocket, session: ConversationSession, frame: object
) -> None:
    kind = frame.get("type") if isinstance(frame, dict) else None
    try:
        if kind == "send":
            await session.send(str(frame.get("text") or ""))
        elif kind == "read":
            await session.mark_read()
        elif kind == "activate":
            await session.activate()
        elif kind == "deactivate":
            session.deactivate()
        else:
            await websocket.send_json(
                {"type": "error", "detail": f"Unknown frame type: {kind}"}
            )
    except MessagingError as e:
        await websocket.send_json({"type": "error", "detail": str(e)})

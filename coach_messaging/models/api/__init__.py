# API models for request/response contracts
from .conversations import (
    BootstrapConversationRequest,
    BootstrapConversationResponse,
    ConversationResponse,
    ConversationSummary,
)
from .events import MessageInsertedEvent, MessagesReadEvent, RealtimeEvent
from .messages import (
    AttachmentReference,
    AttachmentUpload,
    MarkReadResponse,
    MessageResponse,
    NewMessage,
    Role,
)
from .participants import ParticipantResponse
from .session import ConnectionState, SessionSnapshot, SessionState

__all__ = [
    "AttachmentReference",
    "AttachmentUpload",
    "BootstrapConversationRequest",
    "BootstrapConversationResponse",
    "ConnectionState",
    "ConversationResponse",
    "ConversationSummary",
    "MarkReadResponse",
    "MessageInsertedEvent",
    "MessageResponse",
    "MessagesReadEvent",
    "NewMessage",
    "ParticipantResponse",
    "RealtimeEvent",
    "Role",
    "SessionSnapshot",
    "SessionState",
]

# Export all models
from .api import (
    AttachmentReference,
    BootstrapConversationRequest,
    ConversationResponse,
    ConversationSummary,
    MessageResponse,
    ParticipantResponse,
)
from .db import (
    ConversationModel,
    MessageModel,
)

__all__ = [
    # API models
    "AttachmentReference",
    "BootstrapConversationRequest",
    "ConversationResponse",
    "ConversationSummary",
    "MessageResponse",
    "ParticipantResponse",
    # DB models
    "ConversationModel",
    "MessageModel",
]

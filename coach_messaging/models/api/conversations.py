from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .messages import CounterpartRole, MessageResponse


class ConversationResponse(BaseModel):
    """Response model for conversation data."""

    id: UUID
    client_id: str
    counterpart_id: str
    counterpart_role: CounterpartRole
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(BaseModel):
    """Directory entry: a conversation with its latest message and unread badge."""

    conversation: ConversationResponse
    latest_message: Optional[MessageResponse] = None
    unread_count: int = 0

    @property
    def activity_at(self) -> datetime:
        if self.latest_message is not None:
            return self.latest_message.created_at
        return self.conversation.created_at


class BootstrapConversationRequest(BaseModel):
    """Request model for finding or creating a client/counterpart conversation."""

    client_id: str = Field(..., min_length=1, description="Client identity")
    counterpart_id: str = Field(
        ..., min_length=1, description="Coach or admin identity"
    )
    counterpart_role: CounterpartRole = Field(
        default="coach", description="Role of the counterpart"
    )
    counterpart_name: Optional[str] = Field(
        default=None, description="Display name used in the welcome message"
    )


class BootstrapConversationResponse(BaseModel):
    conversation_id: UUID

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["client", "coach", "admin"]
CounterpartRole = Literal["coach", "admin"]


class AttachmentReference(BaseModel):
    """Stored attachment: public URL plus the original filename for display."""

    url: str
    filename: str


class NewMessage(BaseModel):
    """Message as submitted to the store, before id and timestamp are assigned."""

    conversation_id: UUID
    sender_id: str = Field(..., min_length=1)
    sender_role: Role
    text: str = ""
    attachment: Optional[AttachmentReference] = None

    @property
    def has_content(self) -> bool:
        return bool(self.text.strip()) or self.attachment is not None


class MessageResponse(BaseModel):
    """Response model for message data."""

    id: UUID
    conversation_id: UUID
    sender_id: str
    sender_role: Role
    text: str
    created_at: datetime
    read_at: Optional[datetime] = None
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _attachment_fields_paired(self) -> "MessageResponse":
        if (self.attachment_url is None) != (self.attachment_name is None):
            raise ValueError("attachment_url and attachment_name must be set together")
        return self

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class MarkReadResponse(BaseModel):
    """Number of messages flipped to read by a mark-read call."""

    updated: int


class AttachmentUpload(BaseModel):
    """Raw attachment handed in by the caller, before it reaches storage."""

    filename: str = Field(..., min_length=1)
    content: bytes
    content_type: str = "application/octet-stream"

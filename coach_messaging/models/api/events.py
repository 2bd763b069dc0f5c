"""Realtime wire payloads.

Every payload on the pub/sub transport is one of these tagged variants; it is
validated here before any subscriber sees it.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

from .messages import MessageResponse, Role


class MessageInsertedEvent(BaseModel):
    type: Literal["message_inserted"] = "message_inserted"
    message: MessageResponse

    @property
    def conversation_id(self) -> UUID:
        return self.message.conversation_id


class MessagesReadEvent(BaseModel):
    type: Literal["messages_read"] = "messages_read"
    conversation_id: UUID
    reader_role: Role
    message_ids: List[UUID]
    read_at: datetime


RealtimeEvent = Annotated[
    Union[MessageInsertedEvent, MessagesReadEvent], Field(discriminator="type")
]

_event_adapter = TypeAdapter(RealtimeEvent)


def parse_event(raw: Union[str, bytes]) -> RealtimeEvent:
    """Validate a serialized payload; raises ``pydantic.ValidationError``."""
    return _event_adapter.validate_json(raw)


def serialize_event(event: Union[MessageInsertedEvent, MessagesReadEvent]) -> str:
    return event.model_dump_json()

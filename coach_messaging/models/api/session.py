from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from .messages import MessageResponse, Role
from .participants import ParticipantResponse


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    DEGRADED = "degraded"
    CLOSED = "closed"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SessionSnapshot(BaseModel):
    """Point-in-time view of an open conversation."""

    conversation_id: Optional[UUID]
    role: Role
    state: SessionState
    connection: ConnectionState
    messages: List[MessageResponse]
    unread_count: int
    participant: Optional[ParticipantResponse] = None

"""Caller identity as forwarded by the authenticating gateway."""

from typing import get_args

from fastapi import Header, HTTPException
from pydantic import BaseModel

from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.messages import Role

ROLES = get_args(Role)


class CallerIdentity(BaseModel):
    user_id: str
    role: Role

    def can_access(self, conversation: ConversationResponse) -> bool:
        """Clients see their own conversations, coaches those addressed to them."""
        if self.role == "admin":
            return True
        if self.role == "client":
            return conversation.client_id == self.user_id
        return conversation.counterpart_id == self.user_id


def get_caller(
    x_user_id: str = Header(..., description="Authenticated user id"),
    x_user_role: str = Header(..., description="client, coach or admin"),
) -> CallerIdentity:
    """Dependency reading the trusted identity headers."""
    role = x_user_role.strip().lower()
    if not x_user_id.strip() or role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid caller identity")
    return CallerIdentity(user_id=x_user_id.strip(), role=role)

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ParticipantResponse(BaseModel):
    """Read-only profile projection of a coach or client."""

    id: str
    display_name: str
    title: Optional[str] = None
    avatar_ref: Optional[str] = None
    last_seen_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def presence_status(self, now: Optional[datetime] = None) -> str:
        """Human readable presence derived from ``last_seen_at``."""
        if self.last_seen_at is None:
            return "Offline"

        now = now or datetime.now(timezone.utc)
        last_seen = self.last_seen_at
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)

        minutes = int((now - last_seen).total_seconds() // 60)
        if minutes < 5:
            return "Online"
        if minutes < 60:
            return f"Last seen {minutes} min ago"
        return "Last seen " + last_seen.strftime("%I:%M %p").lstrip("0")

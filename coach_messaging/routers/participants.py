from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from coach_messaging.clients.profile_client import ProfileClient
from coach_messaging.dependencies import get_profile_client, to_http_exception
from coach_messaging.errors import MessagingError
from coach_messaging.identity import CallerIdentity, get_caller
from coach_messaging.models.api.participants import ParticipantResponse

router = APIRouter()


@router.get("/{participant_id}", response_model=ParticipantResponse)
async def get_participant(
    participant_id: str,
    caller: CallerIdentity = Depends(get_caller),
    profiles: Optional[ProfileClient] = Depends(get_profile_client),
) -> ParticipantResponse:
    """Profile of a conversation participant (name, title, avatar, last seen)."""
    if profiles is None:
        raise HTTPException(status_code=503, detail="Profile service not configured")
    try:
        return await profiles.get_participant(participant_id)
    except MessagingError as e:
        raise to_http_exception(e)

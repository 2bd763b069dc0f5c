from typing import Optional

import httpx

from coach_messaging.errors import NotFoundError, TransientServiceError
from coach_messaging.models.api.participants import ParticipantResponse


class ProfileClient:
    """Read-only client for the external coach/client profile service."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def get_participant(self, participant_id: str) -> ParticipantResponse:
        """Fetch a participant profile by id.

        A 404 raises ``NotFoundError``; any other failure, including a
        malformed body, raises ``TransientServiceError``.
        """
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/profiles/{participant_id}", headers=headers
                )
        except httpx.TransportError as e:
            raise TransientServiceError(f"Profile service unreachable: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Participant {participant_id} not found")
        if response.status_code >= 400:
            raise TransientServiceError(
                f"Profile service error {response.status_code}"
            )
        try:
            return ParticipantResponse.model_validate(response.json())
        except ValueError as e:
            # Undecodable JSON or a body that is not a profile
            raise TransientServiceError(
                f"Malformed profile for {participant_id}: {e}"
            ) from e

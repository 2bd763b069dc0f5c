from typing import Optional

import httpx

from coach_messaging.clients.base_storage_client import (
    BaseStorageClient,
    ObjectExistsError,
    StorageError,
)


class HttpStorageClient(BaseStorageClient):
    """Object storage client for a bucket-style REST API using httpx."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        api_key: str,
        public_base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.public_base_url = (public_base_url or self.base_url).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def upload(self, key: str, content: bytes, content_type: str) -> None:
        """Upload with upsert disabled so an existing key is never replaced."""
        headers = {
            "Content-Type": content_type or "application/octet-stream",
            "Authorization": f"Bearer {self.api_key}",
            "x-upsert": "false",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/object/{self.bucket}/{key}",
                    content=content,
                    headers=headers,
                )
                if response.status_code == 409:
                    raise ObjectExistsError(key)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/object/public/{self.bucket}/{key}"

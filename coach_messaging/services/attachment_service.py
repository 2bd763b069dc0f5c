import logging
import secrets
import time
from pathlib import PurePosixPath
from typing import Optional
from uuid import UUID

from coach_messaging.clients.base_storage_client import (
    BaseStorageClient,
    ObjectExistsError,
    StorageError,
)
from coach_messaging.errors import UploadError
from coach_messaging.models.api.messages import AttachmentReference

logger = logging.getLogger(__name__)


def build_storage_key(
    conversation_id: UUID,
    filename: str,
    token: Optional[str] = None,
    epoch_ms: Optional[int] = None,
) -> str:
    """``attachments/{conversation}/{token}-{epoch_ms}[.ext]``"""
    token = token or secrets.token_hex(6)
    epoch_ms = int(time.time() * 1000) if epoch_ms is None else epoch_ms
    extension = PurePosixPath(filename).suffix
    return f"attachments/{conversation_id}/{token}-{epoch_ms}{extension}"


class AttachmentPipeline:
    """Uploads attachment bytes to write-once storage."""

    def __init__(self, storage: BaseStorageClient):
        self.storage = storage

    async def upload(
        self,
        conversation_id: UUID,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> AttachmentReference:
        if not filename:
            raise UploadError("Attachment has no filename")

        key = build_storage_key(conversation_id, filename)
        try:
            await self.storage.upload(key, content, content_type)
        except ObjectExistsError as e:
            logger.error("Refusing to overwrite existing attachment %s", e.key)
            raise UploadError(f"Attachment key {e.key} is already taken") from e
        except StorageError as e:
            logger.warning("Attachment upload for %s failed: %s", conversation_id, e)
            raise UploadError(f"Failed to upload {filename}") from e

        logger.info("Uploaded attachment %s (%d bytes)", key, len(content))
        return AttachmentReference(url=self.storage.public_url(key), filename=filename)

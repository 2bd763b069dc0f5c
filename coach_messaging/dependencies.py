"""Shared FastAPI dependencies and error translation for the routers."""

from typing import Dict, Optional, Type

from fastapi import Depends, HTTPException
from starlette.requests import HTTPConnection

from coach_messaging.clients.base_storage_client import BaseStorageClient
from coach_messaging.clients.http_storage_client import HttpStorageClient
from coach_messaging.clients.profile_client import ProfileClient
from coach_messaging.errors import (
    MessagingError,
    NotFoundError,
    TransientServiceError,
    UploadError,
    ValidationError,
)
from coach_messaging.realtime.base import RealtimeChannel
from coach_messaging.services.attachment_service import AttachmentPipeline
from coach_messaging.settings import S

STATUS_CODES: Dict[Type[MessagingError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    UploadError: 502,
    TransientServiceError: 503,
}


def to_http_exception(error: MessagingError) -> HTTPException:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail="Internal server error")


def get_channel(connection: HTTPConnection) -> RealtimeChannel:
    """The realtime channel started by the application lifespan."""
    return connection.app.state.channel


def get_storage_client() -> BaseStorageClient:
    return HttpStorageClient(
        base_url=S.storage_url,
        bucket=S.storage_bucket,
        api_key=S.storage_api_key,
        public_base_url=S.storage_public_url or None,
        timeout=S.http_timeout_seconds,
    )


def get_attachment_pipeline(
    storage: BaseStorageClient = Depends(get_storage_client),
) -> AttachmentPipeline:
    return AttachmentPipeline(storage)


def get_profile_client() -> Optional[ProfileClient]:
    """Profile lookups are optional; without a service URL there are none."""
    if not S.profile_service_url:
        return None
    return ProfileClient(
        base_url=S.profile_service_url,
        api_key=S.profile_service_api_key,
        timeout=S.http_timeout_seconds,
    )

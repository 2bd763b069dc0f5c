from abc import ABC, abstractmethod


class StorageError(Exception):
    """Object storage rejected or failed an operation."""


class ObjectExistsError(StorageError):
    """The storage key is already taken; uploads never overwrite."""

    def __init__(self, key: str):
        super().__init__(f"Object already exists: {key}")
        self.key = key


class BaseStorageClient(ABC):
    """Abstract base class for write-once object storage."""

    @abstractmethod
    async def upload(self, key: str, content: bytes, content_type: str) -> None:
        """Store ``content`` under ``key``.

        Raises:
            ObjectExistsError: if ``key`` is already taken.
            StorageError: for any other failed transfer.
        """

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return the durable URL at which ``key`` can be retrieved."""

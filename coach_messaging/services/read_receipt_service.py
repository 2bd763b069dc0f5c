import inspect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union
from uuid import UUID

from coach_messaging.models.api.messages import Role
from coach_messaging.services.message_buffer import LocalMessageBuffer
from coach_messaging.services.message_store_service import MessageStoreService

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Union[None, Awaitable[None]]]


class ReadReceiptTracker:
    """Flips the other party's messages to read and reconciles unread badges."""

    def __init__(
        self,
        store: MessageStoreService,
        on_directory_refresh: Optional[RefreshCallback] = None,
    ):
        self.store = store
        self.on_directory_refresh = on_directory_refresh

    async def mark_conversation_read(
        self,
        conversation_id: UUID,
        reader_role: Role,
        local_messages: Optional[LocalMessageBuffer] = None,
    ) -> int:
        """
        Mark a conversation read for ``reader_role``:

        1. Update the store (publishes a receipt when anything changed)
        2. Mirror the new read state on the caller's local copies
        3. Ask the directory to refresh its unread counts
        """
        updated, receipt = await self.store.mark_read_receipt(
            conversation_id, reader_role
        )

        if local_messages is not None:
            # Everything from the other party is read in the store now, even
            # messages another session of the same reader marked earlier
            read_at = receipt.read_at if receipt else datetime.now(timezone.utc)
            local_messages.mark_read_from_others(reader_role, read_at)

        await self._refresh_directory()
        return updated

    async def _refresh_directory(self) -> None:
        if self.on_directory_refresh is None:
            return
        result = self.on_directory_refresh()
        if inspect.isawaitable(result):
            await result

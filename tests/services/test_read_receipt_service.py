from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.models.api.events import MessagesReadEvent
from coach_messaging.models.api.messages import MessageResponse
from coach_messaging.realtime import InProcessChannel
from coach_messaging.services.bootstrap_conversation_service import (
    BootstrapConversationService,
)
from coach_messaging.services.list_conversations_service import (
    ListConversationsService,
)
from coach_messaging.services.message_buffer import LocalMessageBuffer
from coach_messaging.services.message_store_service import MessageStoreService
from coach_messaging.services.read_receipt_service import ReadReceiptTracker


def message(conversation_id: UUID, sender_role: str) -> MessageResponse:
    return MessageResponse(
        id=uuid4(),
        conversation_id=conversation_id,
        sender_id=f"{sender_role}-1",
        sender_role=sender_role,
        text="hi",
        created_at=datetime.now(timezone.utc),
    )


class TestReadReceiptTracker:
    """Unit tests with a mocked store."""

    @pytest.mark.asyncio
    async def test_updates_local_copies_and_refreshes(self) -> None:
        conversation_id = uuid4()
        from_coach = message(conversation_id, "coach")
        own = message(conversation_id, "client")
        read_at = datetime.now(timezone.utc)
        store = MagicMock(spec=MessageStoreService)
        store.mark_read_receipt = AsyncMock(
            return_value=(
                1,
                MessagesReadEvent(
                    conversation_id=conversation_id,
                    reader_role="client",
                    message_ids=[from_coach.id],
                    read_at=read_at,
                ),
            )
        )
        refresh = AsyncMock()
        local = LocalMessageBuffer([from_coach, own])

        tracker = ReadReceiptTracker(store, on_directory_refresh=refresh)
        updated = await tracker.mark_conversation_read(
            conversation_id, "client", local_messages=local
        )

        assert updated == 1
        by_id = {m.id: m for m in local}
        assert by_id[from_coach.id].read_at == read_at
        assert by_id[own.id].read_at is None
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refreshes_even_when_nothing_changed(self) -> None:
        store = MagicMock(spec=MessageStoreService)
        store.mark_read_receipt = AsyncMock(return_value=(0, None))
        refresh = MagicMock(return_value=None)

        tracker = ReadReceiptTracker(store, on_directory_refresh=refresh)
        assert await tracker.mark_conversation_read(uuid4(), "coach") == 0

        refresh.assert_called_once()


class TestReadReceiptScenario:
    @pytest.mark.asyncio
    async def test_unread_badge_clears_after_mark_read(
        self, test_db: AsyncSession, channel: InProcessChannel
    ) -> None:
        conversation_id = await BootstrapConversationService(
            test_db, channel
        ).find_or_create("client-x", "coach-x")
        store = MessageStoreService(test_db, channel)
        # Welcome plus two more makes three from the coach
        await store.append(conversation_id, "coach-x", "coach", "Workout done?")
        await store.append(conversation_id, "coach-x", "coach", "Remember to log it")
        directory = ListConversationsService(test_db)
        before = await directory.list_conversations("client-x", "client")

        await ReadReceiptTracker(store).mark_conversation_read(
            conversation_id, "client"
        )
        after = await directory.list_conversations("client-x", "client")

        assert before[0].unread_count == 3
        assert after[0].unread_count == 0

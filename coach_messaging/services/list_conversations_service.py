from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.database import translate_db_errors
from coach_messaging.errors import NotFoundError, ValidationError
from coach_messaging.models.api.conversations import ConversationSummary
from coach_messaging.models.api.messages import Role
from coach_messaging.repositories.conversation_repository import ConversationRepository
from coach_messaging.repositories.message_repository import MessageRepository


class ListConversationsService:
    """Conversation directory: a participant's conversations with unread badges."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversation_repo = ConversationRepository(db)
        self.message_repo = MessageRepository(db)

    async def list_conversations(
        self, participant_id: str, role: Role
    ) -> List[ConversationSummary]:
        """
        List a participant's conversations:

        1. Clients see conversations they own, coaches and admins those
           addressed to them
        2. Attach latest message and unread count (recomputed every call)
        3. Most recent activity first
        """
        if not participant_id:
            raise ValidationError("participant_id is required")

        with translate_db_errors("Conversation directory"):
            # Step 1: Conversations of the participant
            conversations = await self.conversation_repo.list_for_participant(
                participant_id, role
            )
            ids = [conversation.id for conversation in conversations]

            # Step 2: Previews and badges
            latest = await self.message_repo.get_latest_by_conversations(ids)
            unread = await self.message_repo.count_unread_by_conversations(ids, role)

        summaries = [
            ConversationSummary(
                conversation=conversation,
                latest_message=latest.get(conversation.id),
                unread_count=unread.get(conversation.id, 0),
            )
            for conversation in conversations
        ]

        # Step 3: Sort by activity
        summaries.sort(key=lambda summary: summary.activity_at, reverse=True)
        return summaries

    async def get_conversation_summary(
        self, conversation_id: UUID, role: Role
    ) -> ConversationSummary:
        """Directory entry for a single conversation."""
        with translate_db_errors("Conversation summary"):
            conversation = await self.conversation_repo.get_by_id(conversation_id)
            if not conversation:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            latest = await self.message_repo.get_latest_by_conversations(
                [conversation.id]
            )
            unread = await self.message_repo.count_unread_by_conversations(
                [conversation.id], role
            )
        return ConversationSummary(
            conversation=conversation,
            latest_message=latest.get(conversation.id),
            unread_count=unread.get(conversation.id, 0),
        )

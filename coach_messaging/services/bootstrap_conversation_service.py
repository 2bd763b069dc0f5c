import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coach_messaging.database import translate_db_errors
from coach_messaging.errors import TransientServiceError, ValidationError
from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.events import MessageInsertedEvent
from coach_messaging.models.api.messages import CounterpartRole, MessageResponse
from coach_messaging.realtime.base import RealtimeChannel, publish_quietly
from coach_messaging.repositories.conversation_repository import ConversationRepository

logger = logging.getLogger(__name__)

NAMED_WELCOME = "Hi! I'm {name}, your personal fitness coach. How can I help you today?"
GENERIC_WELCOME = "Hello! How can I help you today?"


def welcome_text(counterpart_name: Optional[str] = None) -> str:
    name = (counterpart_name or "").strip()
    if name:
        return NAMED_WELCOME.format(name=name)
    return GENERIC_WELCOME


class BootstrapConversationService:
    """Find-or-create for the single conversation between a client and a counterpart."""

    def __init__(self, db: AsyncSession, channel: RealtimeChannel):
        self.db = db
        self.channel = channel
        self.conversation_repo = ConversationRepository(db)

    async def find_or_create(
        self,
        client_id: str,
        counterpart_id: str,
        counterpart_role: CounterpartRole = "coach",
        counterpart_name: Optional[str] = None,
    ) -> UUID:
        """
        Return the pair's conversation id, creating it on first contact:

        1. Look up the existing conversation
        2. Otherwise insert conversation and welcome message together
        3. If a concurrent bootstrap won the insert, return its conversation
        4. Publish the welcome message
        """
        if not client_id or not counterpart_id:
            raise ValidationError("client_id and counterpart_id are required")
        if client_id == counterpart_id:
            raise ValidationError("A conversation needs two distinct participants")

        with translate_db_errors("Conversation bootstrap"):
            # Step 1: Existing conversation
            existing = await self.conversation_repo.get_by_pair(
                client_id, counterpart_id
            )
            if existing:
                return existing.id

            # Step 2: First contact
            now = datetime.now(timezone.utc)
            conversation = ConversationResponse(
                id=uuid4(),
                client_id=client_id,
                counterpart_id=counterpart_id,
                counterpart_role=counterpart_role,
                created_at=now,
            )
            welcome = MessageResponse(
                id=uuid4(),
                conversation_id=conversation.id,
                sender_id=counterpart_id,
                sender_role=counterpart_role,
                text=welcome_text(counterpart_name),
                created_at=now,
            )
            try:
                created, seeded = await self.conversation_repo.create_with_welcome(
                    conversation, welcome
                )
            except IntegrityError:
                # Step 3: Lost the race on the pair constraint
                logger.info(
                    "Conversation %s/%s was created concurrently, re-reading",
                    client_id,
                    counterpart_id,
                )
                existing = await self.conversation_repo.get_by_pair(
                    client_id, counterpart_id
                )
                if existing is None:
                    raise TransientServiceError(
                        "Conversation insert conflicted but no conversation exists"
                    )
                return existing.id

        logger.info(
            "Created conversation %s between %s and %s %s",
            created.id,
            client_id,
            counterpart_role,
            counterpart_id,
        )

        # Step 4: Publish
        await publish_quietly(self.channel, MessageInsertedEvent(message=seeded))
        return created.id

from typing import Any, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from coach_messaging.models.api.conversations import ConversationResponse
from coach_messaging.models.api.messages import MessageResponse, Role
from coach_messaging.models.db.conversation_model import ConversationModel
from coach_messaging.repositories.base_repository import BaseRepository, as_utc
from coach_messaging.repositories.message_repository import MessageRepository


class ConversationRepository(BaseRepository[ConversationModel, ConversationResponse]):
    """Repository for conversation operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ConversationModel)

    async def get_by_pair(
        self, client_id: str, counterpart_id: str
    ) -> Optional[ConversationResponse]:
        """Find the conversation for a (client, counterpart) pair."""
        query = select(self.model_class).where(
            self.model_class.client_id == client_id,
            self.model_class.counterpart_id == counterpart_id,
        )
        result = await self.db.execute(query)
        db_model = result.scalar_one_or_none()
        return self._to_pydantic(db_model) if db_model else None

    async def create_with_welcome(
        self, conversation: ConversationResponse, welcome: MessageResponse
    ) -> Tuple[ConversationResponse, MessageResponse]:
        """Insert a conversation and its seed message in one transaction.

        Raises ``IntegrityError`` (after rolling back) when another
        transaction already created the same pair.
        """
        message_repo = MessageRepository(self.db)
        db_conversation = self._from_pydantic(conversation)
        db_message = message_repo._from_pydantic(welcome)

        self.db.add(db_conversation)
        try:
            # Conversation row first so the pair constraint fires before the FK
            await self.db.flush()
            self.db.add(db_message)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise

        await self.db.refresh(db_conversation)
        await self.db.refresh(db_message)
        return self._to_pydantic(db_conversation), message_repo._to_pydantic(
            db_message
        )

    async def list_for_participant(
        self, participant_id: str, role: Role
    ) -> List[ConversationResponse]:
        """Conversations a participant takes part in, newest first."""
        if role == "client":
            condition = self.model_class.client_id == participant_id
        else:
            condition = self.model_class.counterpart_id == participant_id

        query = (
            select(self.model_class)
            .where(condition)
            .order_by(self.model_class.created_at.desc())
        )
        result = await self.db.execute(query)
        db_models = result.scalars().all()
        return [self._to_pydantic(db_model) for db_model in db_models]

    def _to_pydantic(self, db_model: Any) -> ConversationResponse:
        """Convert SQLAlchemy ConversationModel to Pydantic ConversationResponse."""
        return ConversationResponse(
            id=db_model.id,
            client_id=db_model.client_id,
            counterpart_id=db_model.counterpart_id,
            counterpart_role=db_model.counterpart_role,
            created_at=as_utc(db_model.created_at),
        )

    def _from_pydantic(self, pydantic_model: ConversationResponse) -> ConversationModel:
        """Convert Pydantic ConversationResponse to SQLAlchemy ConversationModel."""
        return ConversationModel(
            id=pydantic_model.id,
            client_id=pydantic_model.client_id,
            counterpart_id=pydantic_model.counterpart_id,
            counterpart_role=pydantic_model.counterpart_role,
            created_at=pydantic_model.created_at,
        )

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import aliased

from coach_messaging.models.api.messages import MessageResponse, Role
from coach_messaging.models.db.message_model import MessageModel
from coach_messaging.repositories.base_repository import (
    BaseRepository,
    as_utc,
    as_uuid,
)


class MessageRepository(BaseRepository[MessageModel, MessageResponse]):
    """Repository for message operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, MessageModel)

    async def get_by_conversation(
        self,
        conversation_id: Any,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[MessageResponse]:
        """Get messages for a conversation in append order."""
        query = (
            select(self.model_class)
            .where(self.model_class.conversation_id == as_uuid(conversation_id))
            .order_by(self.model_class.created_at, self.model_class.id)
        )  # type: ignore
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        db_models = result.scalars().all()
        return [self._to_pydantic(db_model) for db_model in db_models]

    async def mark_read(
        self, conversation_id: Any, reader_role: Role, read_at: datetime
    ) -> Tuple[int, List[UUID]]:
        """Set ``read_at`` on unread messages not sent by ``reader_role``.

        Returns the number of rows updated and the ids that were unread.
        """
        unread = (
            self.model_class.conversation_id == as_uuid(conversation_id),
            self.model_class.sender_role != reader_role,
            self.model_class.read_at.is_(None),
        )
        result = await self.db.execute(select(self.model_class.id).where(*unread))
        message_ids = list(result.scalars().all())
        if not message_ids:
            return 0, []

        statement = (
            update(self.model_class)
            .where(self.model_class.id.in_(message_ids), *unread)
            .values(read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(statement)
        await self.db.commit()
        return result.rowcount, message_ids

    async def get_latest_by_conversations(
        self, conversation_ids: Sequence[UUID]
    ) -> Dict[UUID, MessageResponse]:
        """Latest message of each conversation, keyed by conversation id."""
        if not conversation_ids:
            return {}

        ranked = (
            select(
                self.model_class,
                func.row_number()
                .over(
                    partition_by=self.model_class.conversation_id,
                    order_by=(
                        self.model_class.created_at.desc(),
                        self.model_class.id.desc(),
                    ),
                )
                .label("position"),
            )
            .where(self.model_class.conversation_id.in_(conversation_ids))
            .subquery()
        )
        latest = aliased(self.model_class, ranked)
        result = await self.db.execute(select(latest).where(ranked.c.position == 1))
        return {
            db_model.conversation_id: self._to_pydantic(db_model)
            for db_model in result.scalars().all()
        }

    async def count_unread_by_conversations(
        self, conversation_ids: Sequence[UUID], reader_role: Role
    ) -> Dict[UUID, int]:
        """Unread messages from the other party, per conversation."""
        if not conversation_ids:
            return {}

        query = (
            select(self.model_class.conversation_id, func.count(self.model_class.id))
            .where(
                self.model_class.conversation_id.in_(conversation_ids),
                self.model_class.sender_role != reader_role,
                self.model_class.read_at.is_(None),
            )
            .group_by(self.model_class.conversation_id)
        )
        result = await self.db.execute(query)
        return {conversation_id: count for conversation_id, count in result.all()}

    def _to_pydantic(self, db_model: Any) -> MessageResponse:
        """Convert SQLAlchemy MessageModel to Pydantic MessageResponse."""
        return MessageResponse(
            id=db_model.id,
            conversation_id=db_model.conversation_id,
            sender_id=db_model.sender_id,
            sender_role=db_model.sender_role,
            text=db_model.text or "",
            created_at=as_utc(db_model.created_at),
            read_at=as_utc(db_model.read_at),
            attachment_url=db_model.attachment_url,
            attachment_name=db_model.attachment_name,
        )

    def _from_pydantic(self, pydantic_model: MessageResponse) -> MessageModel:
        """Convert Pydantic MessageResponse to SQLAlchemy MessageModel."""
        return MessageModel(
            id=pydantic_model.id,
            conversation_id=pydantic_model.conversation_id,
            sender_id=pydantic_model.sender_id,
            sender_role=pydantic_model.sender_role,
            text=pydantic_model.text,
            created_at=pydantic_model.created_at,
            read_at=pydantic_model.read_at,
            attachment_url=pydantic_model.attachment_url,
            attachment_name=pydantic_model.attachment_name,
        )

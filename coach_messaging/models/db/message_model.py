import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from coach_messaging.database import Base


class MessageModel(Base):
    """SQLAlchemy model for messages table."""

    __tablename__ = "messages"
    __table_args__ = (
        Index(
            "idx_messages_conversation_created", "conversation_id", "created_at", "id"
        ),
        CheckConstraint(
            "sender_role IN ('client', 'coach', 'admin')",
            name="ck_messages_sender_role",
        ),
        CheckConstraint(
            "(attachment_url IS NULL) = (attachment_name IS NULL)",
            name="ck_messages_attachment_pair",
        ),
        CheckConstraint(
            "text <> '' OR attachment_url IS NOT NULL", name="ck_messages_content"
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    sender_id = Column(String(255), nullable=False)
    sender_role = Column(String(10), nullable=False)
    text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    attachment_url = Column(Text, nullable=True)
    attachment_name = Column(String(255), nullable=True)

    # Relationships
    conversation = relationship("ConversationModel", back_populates="messages")

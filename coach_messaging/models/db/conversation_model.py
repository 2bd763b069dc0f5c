import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from coach_messaging.database import Base


class ConversationModel(Base):
    """SQLAlchemy model for conversations table."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("client_id", "counterpart_id", name="uq_conversations_pair"),
        CheckConstraint(
            "counterpart_role IN ('coach', 'admin')",
            name="ck_conversations_counterpart_role",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(String(255), nullable=False, index=True)
    counterpart_id = Column(String(255), nullable=False, index=True)
    counterpart_role = Column(String(10), nullable=False, default="coach")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    # Relationships
    messages = relationship(
        "MessageModel", back_populates="conversation", cascade="all, delete-orphan"
    )

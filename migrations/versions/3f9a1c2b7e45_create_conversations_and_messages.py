"""create conversations and messages

Revision ID: 3f9a1c2b7e45
Revises:
Create Date: 2026-10-19 09:12:41.208311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7e45'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Step 1: Conversations, one per (client, counterpart) pair
    op.create_table(
        'conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_id', sa.String(255), nullable=False),
        sa.Column('counterpart_id', sa.String(255), nullable=False),
        sa.Column('counterpart_role', sa.String(10), nullable=False, server_default='coach'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('client_id', 'counterpart_id', name='uq_conversations_pair'),
        sa.CheckConstraint("counterpart_role IN ('coach', 'admin')", name='ck_conversations_counterpart_role'),
    )

    # Step 2: Messages, append-only apart from read_at
    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_id', sa.Uuid(), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('sender_id', sa.String(255), nullable=False),
        sa.Column('sender_role', sa.String(10), nullable=False),
        sa.Column('text', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attachment_url', sa.Text(), nullable=True),
        sa.Column('attachment_name', sa.String(255), nullable=True),
        sa.CheckConstraint("sender_role IN ('client', 'coach', 'admin')", name='ck_messages_sender_role'),
        sa.CheckConstraint(
            '(attachment_url IS NULL) = (attachment_name IS NULL)',
            name='ck_messages_attachment_pair',
        ),
        sa.CheckConstraint(
            "text <> '' OR attachment_url IS NOT NULL",
            name='ck_messages_content',
        ),
    )

    # Step 3: Indexes
    op.create_index('ix_conversations_client_id', 'conversations', ['client_id'])
    op.create_index('ix_conversations_counterpart_id', 'conversations', ['counterpart_id'])
    op.create_index('idx_messages_conversation_created', 'messages', ['conversation_id', 'created_at', 'id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_messages_conversation_created', table_name='messages')
    op.drop_index('ix_conversations_counterpart_id', table_name='conversations')
    op.drop_index('ix_conversations_client_id', table_name='conversations')
    op.drop_table('messages')
    op.drop_table('conversations')

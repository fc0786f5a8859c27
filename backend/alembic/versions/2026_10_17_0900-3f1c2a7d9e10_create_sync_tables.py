"""create_sync_tables

Revision ID: 3f1c2a7d9e10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a7d9e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'ticket_threads',
        sa.Column('ticket_id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('ticket_number', sa.String(length=50), nullable=False),
        sa.Column('thread_id', sa.String(length=32), nullable=False),
        sa.Column('header_message_id', sa.String(length=32), nullable=False),
        sa.Column('channel_id', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('ticket_id')
    )
    op.create_index(op.f('ix_ticket_threads_thread_id'), 'ticket_threads', ['thread_id'], unique=True)

    op.create_table(
        'synced_articles',
        sa.Column('article_id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('thread_id', sa.String(length=32), nullable=False),
        sa.Column('local_message_id', sa.String(length=32), nullable=True),
        sa.Column(
            'direction',
            sa.Enum('REMOTE_TO_LOCAL', 'LOCAL_TO_REMOTE', name='syncdirection'),
            nullable=False,
        ),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('article_id')
    )
    op.create_index(op.f('ix_synced_articles_ticket_id'), 'synced_articles', ['ticket_id'], unique=False)
    op.create_index(op.f('ix_synced_articles_synced_at'), 'synced_articles', ['synced_at'], unique=False)

    op.create_table(
        'webhook_deliveries',
        sa.Column('delivery_id', sa.String(length=128), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('delivery_id')
    )
    op.create_index(op.f('ix_webhook_deliveries_received_at'), 'webhook_deliveries', ['received_at'], unique=False)

    op.create_table(
        'actor_map',
        sa.Column('local_actor_id', sa.String(length=32), nullable=False),
        sa.Column('remote_email', sa.String(), nullable=False),
        sa.Column('remote_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('local_actor_id')
    )
    op.create_index(op.f('ix_actor_map_remote_id'), 'actor_map', ['remote_id'], unique=False)

    # Runtime overrides (attachment limits)
    op.create_table(
        'app_settings',
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.String(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade() -> None:
    op.drop_table('app_settings')
    op.drop_index(op.f('ix_actor_map_remote_id'), table_name='actor_map')
    op.drop_table('actor_map')
    op.drop_index(op.f('ix_webhook_deliveries_received_at'), table_name='webhook_deliveries')
    op.drop_table('webhook_deliveries')
    op.drop_index(op.f('ix_synced_articles_synced_at'), table_name='synced_articles')
    op.drop_index(op.f('ix_synced_articles_ticket_id'), table_name='synced_articles')
    op.drop_table('synced_articles')
    op.drop_index(op.f('ix_ticket_threads_thread_id'), table_name='ticket_threads')
    op.drop_table('ticket_threads')

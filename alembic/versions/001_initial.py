"""Initial schema: users, sessions, likes, conversations, messages

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Conversations hold exactly two participants stored in sorted order, with a
unique pair_key so concurrent first contact cannot create duplicates.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# Revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('profile_url', sa.Text(), nullable=False),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('github_id', sa.String(64), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('session_token', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_sessions_session_token', 'user_sessions', ['session_token'], unique=True)
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])

    op.create_table(
        'user_likes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('liker_username', sa.String(100), nullable=False),
        sa.Column('liked_username', sa.String(100), nullable=False),
        sa.Column('liked_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['liker_username'], ['users.username'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['liked_username'], ['users.username'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('liker_username', 'liked_username', name='uq_user_like'),
    )
    op.create_index('ix_user_likes_liker_username', 'user_likes', ['liker_username'])
    op.create_index('ix_user_likes_liked_username', 'user_likes', ['liked_username'])

    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('participant_a', sa.String(100), nullable=False),
        sa.Column('participant_b', sa.String(100), nullable=False),
        sa.Column('pair_key', sa.String(201), nullable=False),
        sa.Column('last_message', sa.Text(), nullable=False, server_default=''),
        sa.Column('last_message_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('repo_url', sa.Text(), nullable=True),
        sa.Column('repo_owner', sa.String(255), nullable=True),
        sa.Column('repo_name', sa.String(255), nullable=True),
        sa.Column('repo_added_by', sa.String(100), nullable=True),
        sa.Column('repo_added_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pair_key'),
    )
    op.create_index('ix_conversations_participant_a', 'conversations', ['participant_a'])
    op.create_index('ix_conversations_participant_b', 'conversations', ['participant_b'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('sender', sa.String(100), nullable=False),
        sa.Column('receiver', sa.String(100), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(10), nullable=False, server_default='text'),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('image_storage_key', sa.Text(), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('reply_to_id', sa.Integer(), nullable=True),
        sa.Column('reply_to_sender', sa.String(100), nullable=True),
        sa.Column('reply_to_body', sa.Text(), nullable=True),
        sa.Column('forwarded_from', sa.String(100), nullable=True),
        sa.Column('forwarded_message_id', sa.Integer(), nullable=True),
        sa.Column('issue_references', sa.JSON(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_receiver', 'messages', ['receiver'])

    op.create_table(
        'message_reactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('reaction', sa.String(20), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', 'username', name='uq_message_reaction_user'),
    )
    op.create_index('ix_message_reactions_message_id', 'message_reactions', ['message_id'])

    op.create_table(
        'message_deletions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('message_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', 'username', name='uq_message_deletion_user'),
    )
    op.create_index('ix_message_deletions_message_id', 'message_deletions', ['message_id'])


def downgrade() -> None:
    op.drop_index('ix_message_deletions_message_id', 'message_deletions')
    op.drop_table('message_deletions')
    op.drop_index('ix_message_reactions_message_id', 'message_reactions')
    op.drop_table('message_reactions')
    op.drop_index('ix_messages_receiver', 'messages')
    op.drop_index('ix_messages_conversation_id', 'messages')
    op.drop_table('messages')
    op.drop_index('ix_conversations_participant_b', 'conversations')
    op.drop_index('ix_conversations_participant_a', 'conversations')
    op.drop_table('conversations')
    op.drop_index('ix_user_likes_liked_username', 'user_likes')
    op.drop_index('ix_user_likes_liker_username', 'user_likes')
    op.drop_table('user_likes')
    op.drop_index('ix_user_sessions_user_id', 'user_sessions')
    op.drop_index('ix_user_sessions_session_token', 'user_sessions')
    op.drop_table('user_sessions')
    op.drop_index('ix_users_username', 'users')
    op.drop_table('users')

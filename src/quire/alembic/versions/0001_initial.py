"""initial notebook, source, note, chat and workflow tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

AUDIO_STATUS = sa.Enum('PROCESSING', 'COMPLETED', 'FAILED', name='audio_status')
SOURCE_TYPE = sa.Enum('FILE', 'WEBSITE', 'YOUTUBE', 'TEXT', name='source_type')
SOURCE_STATUS = sa.Enum('UPLOADING', 'PROCESSING', 'COMPLETED', 'FAILED', name='source_status')
NOTE_STATUS = sa.Enum('PROCESSING', 'COMPLETED', 'FAILED', name='note_status')
NOTE_TYPE = sa.Enum('TEXT', 'MIND_MAP', name='note_type')
MESSAGE_SENDER = sa.Enum('USER', 'ASSISTANT', name='message_sender')
JOB_STATUS = sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', name='job_status')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    op.create_table(
        'notebook',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('audio_status', AUDIO_STATUS, nullable=True),
        sa.Column('audio_url', sa.String(length=1024), nullable=True),
        sa.Column('audio_title', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_notebook'),
    )
    op.create_index('ix_notebook_owner_id', 'notebook', ['owner_id'])

    op.create_table(
        'source',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('notebook_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('type', SOURCE_TYPE, nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=False),
        sa.Column('mime_type', sa.String(length=255), nullable=True),
        sa.Column('status', SOURCE_STATUS, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_source'),
        sa.ForeignKeyConstraint(
            ['notebook_id'], ['notebook.id'], name='fk_source_notebook_id_notebook', ondelete='CASCADE'
        ),
    )
    op.create_index('ix_source_notebook_id', 'source', ['notebook_id'])
    op.create_index('ix_source_status', 'source', ['status'])

    op.create_table(
        'note',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('notebook_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('status', NOTE_STATUS, nullable=False),
        sa.Column('type', NOTE_TYPE, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_note'),
        sa.ForeignKeyConstraint(
            ['notebook_id'], ['notebook.id'], name='fk_note_notebook_id_notebook', ondelete='CASCADE'
        ),
    )
    op.create_index('ix_note_notebook_id', 'note', ['notebook_id'])

    op.create_table(
        'chat_message',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('notebook_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('sender', MESSAGE_SENDER, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_chat_message'),
        sa.ForeignKeyConstraint(
            ['notebook_id'], ['notebook.id'], name='fk_chat_message_notebook_id_notebook', ondelete='CASCADE'
        ),
    )
    op.create_index('ix_chat_message_notebook_id', 'chat_message', ['notebook_id'])
    op.create_index('ix_chat_message_created_at', 'chat_message', ['created_at'])

    op.create_table(
        'job',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('function', sa.String(length=100), nullable=False),
        sa.Column('event', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', JOB_STATUS, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_job'),
    )
    op.create_index('ix_job_function', 'job', ['function'])
    op.create_index('ix_job_status', 'job', ['status'])

    op.create_table(
        'job_step',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('job_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_job_step'),
        sa.ForeignKeyConstraint(['job_id'], ['job.id'], name='fk_job_step_job_id_job', ondelete='CASCADE'),
        sa.UniqueConstraint('job_id', 'name', name='uq_job_step_job_id'),
    )
    op.create_index('ix_job_step_job_id', 'job_step', ['job_id'])


def downgrade() -> None:
    op.drop_index('ix_job_step_job_id', table_name='job_step')
    op.drop_table('job_step')
    op.drop_index('ix_job_status', table_name='job')
    op.drop_index('ix_job_function', table_name='job')
    op.drop_table('job')
    op.drop_index('ix_chat_message_created_at', table_name='chat_message')
    op.drop_index('ix_chat_message_notebook_id', table_name='chat_message')
    op.drop_table('chat_message')
    op.drop_index('ix_note_notebook_id', table_name='note')
    op.drop_table('note')
    op.drop_index('ix_source_status', table_name='source')
    op.drop_index('ix_source_notebook_id', table_name='source')
    op.drop_table('source')
    op.drop_index('ix_notebook_owner_id', table_name='notebook')
    op.drop_table('notebook')
    bind = op.get_bind()
    for enum in (JOB_STATUS, MESSAGE_SENDER, NOTE_TYPE, NOTE_STATUS, SOURCE_STATUS, SOURCE_TYPE, AUDIO_STATUS):
        enum.drop(bind, checkfirst=True)

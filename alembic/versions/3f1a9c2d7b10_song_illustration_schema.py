"""song illustration schema

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-10-19 09:12:44.102311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'songs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=200), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('language_code', sa.String(length=16), nullable=False, server_default='da'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_songs_slug'), 'songs', ['slug'], unique=True)

    op.create_table(
        'tags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'song_tags',
        sa.Column('song_id', sa.String(length=36), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['song_id'], ['songs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('song_id', 'tag_id'),
        sa.UniqueConstraint('song_id', 'tag_id', name='uq_song_tag'),
    )

    op.create_table(
        'song_verses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('song_id', sa.String(length=36), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('lyric_text', sa.Text(), nullable=False),
        sa.Column('illustration_url', sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['song_id'], ['songs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('song_id', 'sequence_number', name='uq_song_verse_sequence'),
    )
    op.create_index(op.f('ix_song_verses_song_id'), 'song_verses', ['song_id'], unique=False)

    op.create_table(
        'song_generation_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('song_id', sa.String(length=36), nullable=False),
        sa.Column('verse_id', sa.String(length=36), nullable=False),
        sa.Column(
            'status',
            sa.Enum('pending', 'in_progress', 'failed', 'completed',
                    name='song_generation_job_status', native_enum=False, length=16),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('additional_prompt_direction', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['song_id'], ['songs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['verse_id'], ['song_verses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('verse_id'),
    )
    op.create_index(op.f('ix_song_generation_jobs_song_id'), 'song_generation_jobs', ['song_id'], unique=False)
    op.create_index(
        'ix_song_generation_jobs_status_created', 'song_generation_jobs', ['status', 'created_at'], unique=False
    )

    op.create_table(
        'song_generation_verse_artifacts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('verse_id', sa.String(length=36), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('image_url', sa.String(), nullable=True),
        sa.Column('image_path', sa.String(), nullable=True),
        sa.Column('thumbnail_path', sa.String(), nullable=True),
        sa.Column('image_summary', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['song_generation_jobs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['verse_id'], ['song_verses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('verse_id'),
    )

    op.create_table(
        'song_generation_conversations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('song_id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('conversation_id', sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['song_id'], ['songs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('song_id'),
    )


def downgrade() -> None:
    op.drop_table('song_generation_conversations')
    op.drop_table('song_generation_verse_artifacts')
    op.drop_index('ix_song_generation_jobs_status_created', table_name='song_generation_jobs')
    op.drop_index(op.f('ix_song_generation_jobs_song_id'), table_name='song_generation_jobs')
    op.drop_table('song_generation_jobs')
    op.drop_index(op.f('ix_song_verses_song_id'), table_name='song_verses')
    op.drop_table('song_verses')
    op.drop_table('song_tags')
    op.drop_table('tags')
    op.drop_index(op.f('ix_songs_slug'), table_name='songs')
    op.drop_table('songs')

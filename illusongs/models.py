from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    Table, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy import Enum as SAEnum
from datetime import datetime, timezone
import enum
import uuid

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    failed = "failed"
    completed = "completed"


# ---------------------------
# TAGS
# ---------------------------
class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    name = Column(String(64), unique=True, nullable=False)
    display_name = Column(String(64), nullable=False)

    def __repr__(self):
        return f"<Tag {self.name}>"


song_tags = Table(
    "song_tags",
    Base.metadata,
    Column("song_id", ForeignKey("songs.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("song_id", "tag_id", name="uq_song_tag"),
)


# ---------------------------
# SONGS
# ---------------------------
class Song(Base):
    __tablename__ = "songs"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(200), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    language_code = Column(String(16), nullable=False, default="da")
    is_published = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), onupdate=func.now(), nullable=False)

    tags = relationship("Tag", secondary=song_tags, lazy="selectin", order_by="Tag.name")
    verses = relationship(
        "Verse",
        back_populates="song",
        order_by="Verse.sequence_number.asc()",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags or []]

    def __repr__(self):
        return f"<Song {self.slug}>"


class Verse(Base):
    __tablename__ = "song_verses"

    id = Column(String(36), primary_key=True, default=_uuid)
    song_id = Column(String(36), ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    lyric_text = Column(Text, nullable=False)
    illustration_url = Column(String, nullable=True)  # NULL = awaiting generation
    created_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), onupdate=func.now(), nullable=False)

    song = relationship("Song", back_populates="verses")

    __table_args__ = (
        UniqueConstraint("song_id", "sequence_number", name="uq_song_verse_sequence"),
    )


# ---------------------------
# GENERATION QUEUE
# ---------------------------
class GenerationJob(Base):
    __tablename__ = "song_generation_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    song_id = Column(String(36), ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, index=True)
    verse_id = Column(String(36), ForeignKey("song_verses.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(
        SAEnum(JobStatus, name="song_generation_job_status", native_enum=False, length=16),
        nullable=False,
        default=JobStatus.pending,
    )
    attempts = Column(Integer, nullable=False, default=0)
    additional_prompt_direction = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_song_generation_jobs_status_created", "status", "created_at"),
    )


class VerseArtifact(Base):
    __tablename__ = "song_generation_verse_artifacts"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("song_generation_jobs.id", ondelete="CASCADE"), nullable=False)
    verse_id = Column(String(36), ForeignKey("song_verses.id", ondelete="CASCADE"), nullable=False, unique=True)
    prompt = Column(Text, nullable=False)
    provider = Column(String(64), nullable=False)
    model = Column(String(128), nullable=False)
    image_url = Column(String, nullable=True)
    image_path = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    image_summary = Column(Text, nullable=True)  # continuity text for later verses
    created_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), onupdate=func.now(), nullable=False)


class GenerationConversation(Base):
    __tablename__ = "song_generation_conversations"

    id = Column(Integer, primary_key=True)
    song_id = Column(String(36), ForeignKey("songs.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider = Column(String(64), nullable=False)
    model = Column(String(128), nullable=False)
    conversation_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, server_default=func.now(), onupdate=func.now(), nullable=False)

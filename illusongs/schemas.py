from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

from .models import JobStatus


# =========================
# SONG SCHEMAS
# =========================
class VerseRead(BaseModel):
    id: str
    sequence_number: int
    lyric_text: str
    illustration_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SongSummaryRead(BaseModel):
    id: str
    slug: str
    title: str
    language_code: str
    cover_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    tags: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class SongDetailRead(BaseModel):
    id: str
    slug: str
    title: str
    language_code: str
    is_published: bool
    created_at: datetime
    updated_at: datetime
    # ORM rows expose tag_names; already-serialized payloads carry tags
    tags: List[str] = Field(default_factory=list, validation_alias=AliasChoices("tag_names", "tags"))
    verses: List[VerseRead] = []

    model_config = ConfigDict(from_attributes=True)


class AdminSongSummaryRead(BaseModel):
    id: str
    title: str
    slug: str
    is_published: bool
    created_at: datetime
    updated_at: datetime
    verse_count: int
    pending_jobs: int

    model_config = ConfigDict(from_attributes=True)


class SongDraftCreate(BaseModel):
    title: str
    verses_text: str
    language_code: Optional[str] = None
    tags: Optional[List[str]] = None


class SongImportVerse(BaseModel):
    sequence_number: int
    lyric_text: str
    illustration_url: Optional[str] = None


class SongImport(BaseModel):
    slug: str
    title: str
    language_code: Optional[str] = None
    is_published: bool = True
    tags: Optional[List[str]] = None
    verses: List[SongImportVerse]


class SongLyricsUpdate(BaseModel):
    lyrics_text: str


class SongLyricsUpdateRead(BaseModel):
    song: SongDetailRead
    matched: int
    significant: int
    added: int
    removed: int
    unpublished: bool


# =========================
# GENERATION SCHEMAS
# =========================
class JobListItemRead(BaseModel):
    id: str
    song_id: str
    verse_id: str
    status: JobStatus
    attempts: int
    additional_prompt_direction: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    song_title: str
    song_slug: str
    song_is_published: bool
    verse_sequence: int
    verse_lyric: str
    verse_illustration_url: Optional[str] = None
    conversation_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RequeueRequest(BaseModel):
    # leaving the key out keeps the stored direction; null clears it
    additional_prompt_direction: Optional[str] = None


class RequeueRead(BaseModel):
    status: str = "queued"
    job_id: str
    verse_id: str


class GenerationRunRead(BaseModel):
    job_id: str
    song_id: str
    verse_id: str
    verse_sequence: int
    provider: str
    model: str
    conversation_id: Optional[str] = None
    response_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

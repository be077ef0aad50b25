# services/generation_queue.py
"""Per-verse illustration jobs: enqueue, claim, complete, fail, reset, list.

Every function takes the caller's session and runs inside the caller's
transaction; nothing here commits.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Union

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from illusongs.models import (
    GenerationConversation,
    GenerationJob,
    JobStatus,
    Song,
    Verse,
    VerseArtifact,
)

logger = logging.getLogger(__name__)


class JobNotFoundError(LookupError):
    pass


class Unset(enum.Enum):
    UNSET = "UNSET"


# reset_job(..., additional_prompt_direction=UNSET) leaves the direction untouched
UNSET = Unset.UNSET
DirectionUpdate = Union[str, None, Unset]


class _SequencedVerse(Protocol):
    id: str
    sequence_number: int


@dataclass
class JobClaim:
    job: GenerationJob
    song: Song
    verse: Verse


@dataclass
class ResetJobResult:
    job_id: str
    song_id: str
    verse_id: str
    image_path: Optional[str]
    thumbnail_path: Optional[str]


@dataclass
class JobListItem:
    id: str
    song_id: str
    verse_id: str
    status: JobStatus
    attempts: int
    additional_prompt_direction: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime
    song_title: str
    song_slug: str
    song_is_published: bool
    verse_sequence: int
    verse_lyric: str
    verse_illustration_url: Optional[str]
    conversation_id: Optional[str]


def _insert(db: AsyncSession, table):
    # Postgres in production; the sqlite construct offers the same ON CONFLICT API.
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


def normalize_direction(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------------------------------------------
# Enqueue / claim
# ---------------------------------------------
async def enqueue_generation_jobs(
    db: AsyncSession, song_id: str, verses: Iterable[_SequencedVerse]
) -> None:
    """Insert one pending job per verse; verses that already have a job are skipped."""
    for verse in sorted(verses, key=lambda v: v.sequence_number):
        stmt = (
            _insert(db, GenerationJob.__table__)
            .values(song_id=song_id, verse_id=verse.id, status=JobStatus.pending, attempts=0)
            .on_conflict_do_nothing(index_elements=["verse_id"])
        )
        await db.execute(stmt)


async def _load_song(db: AsyncSession, song_id: str) -> Song:
    song = (
        await db.execute(
            select(Song).where(Song.id == song_id).execution_options(populate_existing=True)
        )
    ).scalars().first()
    if not song:
        raise LookupError(f"Song {song_id} not found for generation job.")
    return song


async def claim_next_job(db: AsyncSession) -> Optional[JobClaim]:
    """Claim the oldest pending job, skipping rows locked by other workers."""
    stmt = (
        select(GenerationJob)
        .join(Verse, Verse.id == GenerationJob.verse_id)
        .where(GenerationJob.status == JobStatus.pending)
        .order_by(GenerationJob.created_at.asc(), Verse.sequence_number.asc())
        .limit(1)
        .with_for_update(skip_locked=True, of=GenerationJob)
    )
    job = (await db.execute(stmt)).scalars().first()
    if not job:
        return None

    result = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job.id)
        .values(
            status=JobStatus.in_progress,
            attempts=GenerationJob.attempts + 1,
            started_at=func.coalesce(GenerationJob.started_at, func.now()),
            last_error=None,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise RuntimeError("Failed to transition job to in_progress.")
    await db.refresh(job)

    song = await _load_song(db, job.song_id)
    verse = next((v for v in song.verses if v.id == job.verse_id), None)
    if verse is None:
        raise LookupError(f"Verse {job.verse_id} not found for song {job.song_id}.")
    return JobClaim(job=job, song=song, verse=verse)


# ---------------------------------------------
# Status transitions
# ---------------------------------------------
async def mark_job_completed(db: AsyncSession, job_id: str) -> None:
    result = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id)
        .values(
            status=JobStatus.completed,
            completed_at=func.now(),
            last_error=None,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise JobNotFoundError(f"Song generation job {job_id} not found.")


async def mark_job_failed(db: AsyncSession, job_id: str, error_message: str) -> None:
    result = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id)
        .values(
            status=JobStatus.failed,
            completed_at=None,
            last_error=error_message,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise JobNotFoundError(f"Song generation job {job_id} not found.")


async def reset_job(
    db: AsyncSession,
    job_id: str,
    additional_prompt_direction: DirectionUpdate = UNSET,
) -> Optional[ResetJobResult]:
    """Put a job back to pending and drop its verse's illustration state.

    `additional_prompt_direction`: UNSET keeps the stored value, None clears it,
    a string replaces it (trimmed, empty means None). Returns the storage paths
    of the deleted artifact so the caller can remove the blobs.
    """
    job = (
        await db.execute(select(GenerationJob).where(GenerationJob.id == job_id).with_for_update())
    ).scalars().first()
    if not job:
        return None

    artifact = (
        await db.execute(select(VerseArtifact).where(VerseArtifact.verse_id == job.verse_id))
    ).scalars().first()
    image_path = artifact.image_path if artifact else None
    thumbnail_path = artifact.thumbnail_path if artifact else None

    values = dict(
        status=JobStatus.pending,
        started_at=None,
        completed_at=None,
        last_error=None,
        updated_at=func.now(),
    )
    if additional_prompt_direction is not UNSET:
        values["additional_prompt_direction"] = normalize_direction(additional_prompt_direction)

    await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Verse)
        .where(Verse.id == job.verse_id)
        .values(illustration_url=None, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(VerseArtifact)
        .where(VerseArtifact.verse_id == job.verse_id)
        .execution_options(synchronize_session=False)
    )
    logger.info("Reset generation job %s for verse %s", job.id, job.verse_id)

    return ResetJobResult(
        job_id=job.id,
        song_id=job.song_id,
        verse_id=job.verse_id,
        image_path=image_path,
        thumbnail_path=thumbnail_path,
    )


# ---------------------------------------------
# Lookups
# ---------------------------------------------
async def find_job_for_verse(db: AsyncSession, song_id: str, verse_id: str) -> Optional[GenerationJob]:
    return (
        await db.execute(
            select(GenerationJob)
            .where(GenerationJob.song_id == song_id, GenerationJob.verse_id == verse_id)
            .order_by(GenerationJob.created_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def list_jobs(
    db: AsyncSession,
    limit: int = 50,
    exclude_published: bool = False,
    search: Optional[str] = None,
) -> list[JobListItem]:
    stmt = (
        select(
            GenerationJob,
            Song.title,
            Song.slug,
            Song.is_published,
            Verse.sequence_number,
            Verse.lyric_text,
            Verse.illustration_url,
            GenerationConversation.conversation_id,
        )
        .join(Song, Song.id == GenerationJob.song_id)
        .join(Verse, Verse.id == GenerationJob.verse_id)
        .outerjoin(GenerationConversation, GenerationConversation.song_id == GenerationJob.song_id)
    )
    if exclude_published:
        stmt = stmt.where(Song.is_published.is_(False))
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(
            or_(Song.title.ilike(pattern), Song.slug.ilike(pattern), Verse.lyric_text.ilike(pattern))
        )
    stmt = stmt.order_by(GenerationJob.created_at.desc(), Verse.sequence_number.asc()).limit(limit)

    items: list[JobListItem] = []
    for job, title, slug, published, sequence, lyric, url, conversation_id in (await db.execute(stmt)).all():
        items.append(
            JobListItem(
                id=job.id,
                song_id=job.song_id,
                verse_id=job.verse_id,
                status=job.status,
                attempts=job.attempts,
                additional_prompt_direction=job.additional_prompt_direction,
                started_at=job.started_at,
                completed_at=job.completed_at,
                last_error=job.last_error,
                created_at=job.created_at,
                updated_at=job.updated_at,
                song_title=title,
                song_slug=slug,
                song_is_published=published,
                verse_sequence=sequence,
                verse_lyric=lyric,
                verse_illustration_url=url,
                conversation_id=conversation_id,
            )
        )
    return items


# ---------------------------------------------
# Artifacts
# ---------------------------------------------
async def record_verse_artifact(
    db: AsyncSession,
    *,
    job_id: str,
    verse_id: str,
    prompt: str,
    provider: str,
    model: str,
    image_url: Optional[str],
    image_path: Optional[str],
    thumbnail_path: Optional[str],
    image_summary: Optional[str],
) -> None:
    stmt = _insert(db, VerseArtifact.__table__).values(
        job_id=job_id,
        verse_id=verse_id,
        prompt=prompt,
        provider=provider,
        model=model,
        image_url=image_url,
        image_path=image_path,
        thumbnail_path=thumbnail_path,
        image_summary=image_summary,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["verse_id"],
        set_={
            "job_id": stmt.excluded.job_id,
            "prompt": stmt.excluded.prompt,
            "provider": stmt.excluded.provider,
            "model": stmt.excluded.model,
            "image_url": stmt.excluded.image_url,
            "image_path": stmt.excluded.image_path,
            "thumbnail_path": stmt.excluded.thumbnail_path,
            "image_summary": stmt.excluded.image_summary,
            "updated_at": func.now(),
        },
    )
    await db.execute(stmt)


async def fetch_artifacts_for_song(db: AsyncSession, song_id: str) -> list[VerseArtifact]:
    return list(
        (
            await db.execute(
                select(VerseArtifact)
                .join(Verse, Verse.id == VerseArtifact.verse_id)
                .where(Verse.song_id == song_id)
                .order_by(Verse.sequence_number)
            )
        ).scalars().all()
    )


# ---------------------------------------------
# Provider conversations
# ---------------------------------------------
async def find_conversation(db: AsyncSession, song_id: str) -> Optional[GenerationConversation]:
    return (
        await db.execute(select(GenerationConversation).where(GenerationConversation.song_id == song_id))
    ).scalars().first()


async def upsert_conversation(
    db: AsyncSession, *, song_id: str, provider: str, model: str, conversation_id: str
) -> None:
    stmt = _insert(db, GenerationConversation.__table__).values(
        song_id=song_id, provider=provider, model=model, conversation_id=conversation_id
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["song_id"],
        set_={
            "provider": stmt.excluded.provider,
            "model": stmt.excluded.model,
            "conversation_id": stmt.excluded.conversation_id,
            "updated_at": func.now(),
        },
    )
    await db.execute(stmt)

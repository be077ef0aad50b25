# services/songs.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from illusongs.models import GenerationJob, JobStatus, Song, Tag, Verse
from illusongs.services.generation_queue import enqueue_generation_jobs
from illusongs.services.reconcile import ReconciliationPlan, reconcile_verses
from illusongs.settings.config import settings
from illusongs.utils import normalize_tags, slugify, split_song_verses

logger = logging.getLogger(__name__)

# matched verses are parked this far above their targets while renumbering
SEQUENCE_BUMP = 1000


class InvalidSongDraftError(ValueError):
    pass


class SongNotFoundError(LookupError):
    pass


class SongUpdateConflictError(RuntimeError):
    pass


class SongSlugConflictError(ValueError):
    pass


@dataclass
class LyricsUpdateResult:
    song: Song
    plan: ReconciliationPlan
    unpublished: bool


@dataclass
class SongSummary:
    id: str
    slug: str
    title: str
    language_code: str
    is_published: bool
    cover_image_url: Optional[str]
    created_at: datetime
    updated_at: datetime
    tags: list[str] = field(default_factory=list)


@dataclass
class AdminSongSummary:
    id: str
    title: str
    slug: str
    is_published: bool
    created_at: datetime
    updated_at: datetime
    verse_count: int
    pending_jobs: int


def slugify_song_title(title: str) -> str:
    if not (title or "").strip():
        raise InvalidSongDraftError("Song title is required.")
    slug = slugify(title)
    if not slug:
        raise InvalidSongDraftError("Song title must contain at least one alphanumeric character.")
    return slug


async def _ensure_tags(db: AsyncSession, names: Sequence[str]) -> list[Tag]:
    if not names:
        return []
    existing = {
        t.name: t for t in (await db.execute(select(Tag).where(Tag.name.in_(names)))).scalars().all()
    }
    tags: list[Tag] = []
    for name in sorted(names):
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name, display_name=name)
            db.add(tag)
        tags.append(tag)
    return tags


# ---------------------------------------------
# Queries
# ---------------------------------------------
async def get_song(db: AsyncSession, song_id: str) -> Optional[Song]:
    return (
        await db.execute(
            select(Song).where(Song.id == song_id).execution_options(populate_existing=True)
        )
    ).scalars().first()


async def find_song_by_slug(
    db: AsyncSession, slug: str, include_unpublished: bool = False
) -> Optional[Song]:
    stmt = select(Song).where(Song.slug == slug)
    if not include_unpublished:
        stmt = stmt.where(Song.is_published.is_(True))
    return (await db.execute(stmt)).scalars().first()


def _cover_image(song: Song) -> Optional[str]:
    for verse in song.verses:
        if verse.illustration_url:
            return verse.illustration_url
    return None


async def fetch_published_songs(db: AsyncSession) -> list[SongSummary]:
    songs = (
        await db.execute(
            select(Song)
            .where(Song.is_published.is_(True))
            .order_by(Song.title, Song.created_at.desc())
        )
    ).scalars().all()
    return [
        SongSummary(
            id=s.id,
            slug=s.slug,
            title=s.title,
            language_code=s.language_code,
            is_published=s.is_published,
            cover_image_url=_cover_image(s),
            created_at=s.created_at,
            updated_at=s.updated_at,
            tags=s.tag_names,
        )
        for s in songs
    ]


async def fetch_admin_song_summaries(db: AsyncSession) -> list[AdminSongSummary]:
    verse_count = (
        select(func.count(Verse.id)).where(Verse.song_id == Song.id).correlate(Song).scalar_subquery()
    )
    pending_jobs = (
        select(func.count(GenerationJob.id))
        .where(GenerationJob.song_id == Song.id, GenerationJob.status == JobStatus.pending)
        .correlate(Song)
        .scalar_subquery()
    )
    rows = (
        await db.execute(
            select(
                Song.id, Song.title, Song.slug, Song.is_published,
                Song.created_at, Song.updated_at, verse_count, pending_jobs,
            ).order_by(Song.title)
        )
    ).all()
    return [
        AdminSongSummary(
            id=r[0], title=r[1], slug=r[2], is_published=r[3],
            created_at=r[4], updated_at=r[5], verse_count=int(r[6] or 0), pending_jobs=int(r[7] or 0),
        )
        for r in rows
    ]


# ---------------------------------------------
# Commands
# ---------------------------------------------
async def create_song_draft(
    db: AsyncSession,
    title: str,
    verses_text: str,
    language_code: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
) -> Song:
    """Create an unpublished song from raw lyric text and queue one job per verse."""
    if not isinstance(title, str) or not title.strip():
        raise InvalidSongDraftError("Song title is required.")
    if not isinstance(verses_text, str):
        raise InvalidSongDraftError("Song verses text is required.")

    texts = split_song_verses(verses_text)
    if not texts:
        raise InvalidSongDraftError("Song must contain at least one verse with content.")

    slug = slugify_song_title(title)
    taken = (await db.execute(select(Song.id).where(Song.slug == slug))).scalar_one_or_none()
    if taken:
        raise InvalidSongDraftError(f"A song with the slug '{slug}' already exists.")

    song = Song(
        slug=slug,
        title=title.strip(),
        language_code=(language_code or "").strip() or settings.DEFAULT_LANGUAGE,
        is_published=False,
    )
    song.tags = await _ensure_tags(db, normalize_tags(tags))
    song.verses = [
        Verse(sequence_number=index + 1, lyric_text=text, illustration_url=None)
        for index, text in enumerate(texts)
    ]
    db.add(song)
    await db.flush()

    await enqueue_generation_jobs(db, song.id, song.verses)
    logger.info("Created song draft %s with %d verses", song.slug, len(song.verses))
    return song


class SongImportVerse(Protocol):
    sequence_number: int
    lyric_text: str
    illustration_url: Optional[str]


def _import_verse(verse: SongImportVerse, index: int) -> Verse:
    sequence = verse.sequence_number
    if not isinstance(sequence, int) or isinstance(sequence, bool):
        raise InvalidSongDraftError(f"Verse at index {index} is missing a valid sequence number.")
    if sequence <= 0:
        raise InvalidSongDraftError(f"Verse at index {index} must have a sequence number greater than zero.")
    if not isinstance(verse.lyric_text, str) or not verse.lyric_text.strip():
        raise InvalidSongDraftError(f"Verse at index {index} must include lyric text.")
    illustration = verse.illustration_url
    if illustration is not None:
        illustration = illustration.strip()
        if not illustration:
            raise InvalidSongDraftError(f"Verse at index {index} has an invalid illustration url.")
    return Verse(sequence_number=sequence, lyric_text=verse.lyric_text, illustration_url=illustration)


async def create_song(
    db: AsyncSession,
    slug: str,
    title: str,
    verses: Sequence[SongImportVerse],
    language_code: Optional[str] = None,
    is_published: bool = True,
    tags: Optional[Sequence[str]] = None,
) -> Song:
    """Import a finished song with explicit verse numbers and illustration URLs.

    Unlike a draft, nothing is queued for generation and the song is published
    unless told otherwise.
    """
    slug = (slug or "").strip().lower()
    if not slug:
        raise InvalidSongDraftError("Song slug is required.")
    if not isinstance(title, str) or not title.strip():
        raise InvalidSongDraftError("Song title is required.")
    if not verses:
        raise InvalidSongDraftError("Song requires at least one verse.")

    rows = [_import_verse(verse, index) for index, verse in enumerate(verses)]
    if len({row.sequence_number for row in rows}) != len(rows):
        raise InvalidSongDraftError("Verses must have unique sequence numbers.")

    taken = (await db.execute(select(Song.id).where(Song.slug == slug))).scalar_one_or_none()
    if taken:
        raise SongSlugConflictError("A song with the provided slug already exists.")

    song = Song(
        slug=slug,
        title=title.strip(),
        language_code=(language_code or "").strip() or settings.DEFAULT_LANGUAGE,
        is_published=bool(is_published),
    )
    song.tags = await _ensure_tags(db, normalize_tags(tags))
    song.verses = sorted(rows, key=lambda row: row.sequence_number)
    db.add(song)
    try:
        await db.flush()
    except IntegrityError as e:
        raise SongSlugConflictError("A song with the provided slug already exists.") from e

    logger.info("Imported song %s with %d verses", song.slug, len(song.verses))
    return song


async def set_song_published(db: AsyncSession, song_id: str, published: bool) -> Song:
    result = await db.execute(
        update(Song)
        .where(Song.id == song_id)
        .values(is_published=published, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise SongNotFoundError(f"Song {song_id} not found.")
    return await get_song(db, song_id)


async def update_song_lyrics(db: AsyncSession, song_id: str, lyrics_text: str) -> LyricsUpdateResult:
    """Reconcile edited lyric text against the stored verses and apply the plan.

    Matched verses keep their id (and so their job and illustration), new
    verses get a pending job, removed verses are deleted. The song is
    unpublished when verses were added or a match changed significantly.
    """
    texts = split_song_verses(lyrics_text if isinstance(lyrics_text, str) else "")
    if not texts:
        raise InvalidSongDraftError("Song must contain at least one verse with content.")

    song_row = (
        await db.execute(select(Song.id).where(Song.id == song_id).with_for_update())
    ).scalar_one_or_none()
    if song_row is None:
        raise SongNotFoundError(f"Song {song_id} not found.")

    verses = (
        await db.execute(
            select(Verse)
            .where(Verse.song_id == song_id)
            .order_by(Verse.sequence_number)
            .with_for_update()
        )
    ).scalars().all()
    if not verses:
        raise InvalidSongDraftError("Song has no verses to reconcile against.")

    plan = reconcile_verses(verses, texts)

    if plan.removed_verse_ids:
        removed = await db.execute(
            delete(Verse)
            .where(Verse.song_id == song_id, Verse.id.in_(plan.removed_verse_ids))
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount != len(plan.removed_verse_ids):
            raise SongUpdateConflictError("Song verses changed while saving. Reload and try again.")

    matched_ids = [verses[m.old_index].id for m in plan.matches]
    if matched_ids:
        bumped = await db.execute(
            update(Verse)
            .where(Verse.song_id == song_id, Verse.id.in_(matched_ids))
            .values(sequence_number=Verse.sequence_number + SEQUENCE_BUMP)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount != len(matched_ids):
            raise SongUpdateConflictError("Song verses changed while saving. Reload and try again.")

    for match in plan.matches:
        moved = await db.execute(
            update(Verse)
            .where(Verse.id == verses[match.old_index].id, Verse.song_id == song_id)
            .values(
                sequence_number=match.new_index + 1,
                lyric_text=texts[match.new_index],
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            raise SongUpdateConflictError("Song verses changed while saving. Reload and try again.")

    new_verses = [
        Verse(song_id=song_id, sequence_number=index + 1, lyric_text=texts[index], illustration_url=None)
        for index in plan.new_verse_indexes
    ]
    if new_verses:
        db.add_all(new_verses)
        await db.flush()
        await enqueue_generation_jobs(db, song_id, new_verses)

    song_values = {"updated_at": func.now()}
    if plan.requires_unpublish:
        song_values["is_published"] = False
    await db.execute(
        update(Song).where(Song.id == song_id).values(**song_values).execution_options(synchronize_session=False)
    )

    logger.info(
        "Reconciled song %s: %d matched (%d significant), %d new, %d removed",
        song_id,
        len(plan.matches),
        len(plan.significant_matches),
        len(plan.new_verse_indexes),
        len(plan.removed_verse_ids),
    )

    db.expire_all()
    song = await get_song(db, song_id)
    return LyricsUpdateResult(song=song, plan=plan, unpublished=plan.requires_unpublish)

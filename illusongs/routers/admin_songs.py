from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import (
    AdminSongSummaryRead,
    SongDetailRead,
    SongDraftCreate,
    SongLyricsUpdate,
    SongLyricsUpdateRead,
)
from ..services.songs import (
    InvalidSongDraftError,
    SongNotFoundError,
    SongUpdateConflictError,
    create_song_draft,
    fetch_admin_song_summaries,
    get_song,
    set_song_published,
    update_song_lyrics,
)
from ..utils import require_admin_user

router = APIRouter(prefix="/api/admin/songs", tags=["admin", "songs"])


@router.get("", response_model=list[AdminSongSummaryRead])
async def admin_song_list(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return await fetch_admin_song_summaries(db)


@router.get("/{song_id}", response_model=SongDetailRead)
async def admin_song_detail(
    song_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    song = await get_song(db, song_id)
    if not song:
        raise HTTPException(404, "Song not found")
    return song


@router.post("", response_model=SongDetailRead, status_code=201)
async def admin_song_create(
    payload: SongDraftCreate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    try:
        async with db.begin():
            song = await create_song_draft(
                db,
                title=payload.title,
                verses_text=payload.verses_text,
                language_code=payload.language_code,
                tags=payload.tags,
            )
    except InvalidSongDraftError as e:
        raise HTTPException(400, str(e)) from e
    return song


@router.put("/{song_id}/lyrics", response_model=SongLyricsUpdateRead)
async def admin_song_update_lyrics(
    song_id: str,
    payload: SongLyricsUpdate,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    try:
        async with db.begin():
            result = await update_song_lyrics(db, song_id, payload.lyrics_text)
    except InvalidSongDraftError as e:
        raise HTTPException(400, str(e)) from e
    except SongNotFoundError as e:
        raise HTTPException(404, "Song not found") from e
    except SongUpdateConflictError as e:
        raise HTTPException(409, str(e)) from e

    return SongLyricsUpdateRead(
        song=SongDetailRead.model_validate(result.song),
        matched=len(result.plan.matches),
        significant=len(result.plan.significant_matches),
        added=len(result.plan.new_verse_indexes),
        removed=len(result.plan.removed_verse_ids),
        unpublished=result.unpublished,
    )


async def _set_published(db: AsyncSession, song_id: str, published: bool):
    try:
        async with db.begin():
            return await set_song_published(db, song_id, published)
    except SongNotFoundError as e:
        raise HTTPException(404, "Song not found") from e


@router.post("/{song_id}/publish", response_model=SongDetailRead)
async def admin_song_publish(
    song_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return await _set_published(db, song_id, True)


@router.post("/{song_id}/unpublish", response_model=SongDetailRead)
async def admin_song_unpublish(
    song_id: str,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return await _set_published(db, song_id, False)


__all__ = ["router"]

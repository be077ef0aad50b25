from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from illusongs.database import get_db
from illusongs.schemas import SongDetailRead, SongImport, SongSummaryRead
from illusongs.services.songs import (
    InvalidSongDraftError,
    SongSlugConflictError,
    create_song,
    fetch_published_songs,
    find_song_by_slug,
)
from illusongs.utils import require_admin_user

router = APIRouter(prefix="/api/songs", tags=["songs"])


@router.get("", response_model=list[SongSummaryRead])
async def list_published_songs(db: AsyncSession = Depends(get_db)):
    return await fetch_published_songs(db)


@router.post("", response_model=SongDetailRead, status_code=201)
async def import_song(
    payload: SongImport,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    """Import a song whose verses (and possibly illustrations) already exist."""
    try:
        async with db.begin():
            song = await create_song(
                db,
                slug=payload.slug,
                title=payload.title,
                verses=payload.verses,
                language_code=payload.language_code,
                is_published=payload.is_published,
                tags=payload.tags,
            )
    except InvalidSongDraftError as e:
        raise HTTPException(400, str(e)) from e
    except SongSlugConflictError as e:
        raise HTTPException(409, str(e)) from e
    return song


@router.get("/{slug}", response_model=SongDetailRead)
async def song_detail(slug: str, db: AsyncSession = Depends(get_db)):
    song = await find_song_by_slug(db, slug)
    if not song:
        raise HTTPException(status_code=404, detail="Song not found")
    return song


__all__ = ["router"]

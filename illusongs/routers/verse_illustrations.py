from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..routes_shared import get_storage
from ..schemas import VerseRead
from ..services.illustrations import (
    IllustrationProcessingError,
    IllustrationUploadError,
    InvalidIllustrationError,
    LocalIllustrationStorage,
    SongVerseNotFoundError,
    save_verse_illustration,
)
from ..utils import require_admin_user

logger = logging.getLogger(__name__)
router = APIRouter(tags=["admin", "illustrations"])


def _uuid_param(value: str, name: str) -> str:
    candidate = (value or "").strip().lower()
    if not candidate:
        raise HTTPException(400, f"{name} must be provided.")
    try:
        uuid.UUID(candidate)
    except ValueError:
        raise HTTPException(400, f"{name} must be a valid UUID.")
    return candidate


@router.post("/api/song/{song_id}/verse/{verse_id}/illustration", response_model=VerseRead)
async def upload_verse_illustration(
    song_id: str,
    verse_id: str,
    file: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db),
    storage: LocalIllustrationStorage = Depends(get_storage),
    admin=Depends(require_admin_user),
):
    """Replace a verse's illustration with an uploaded image (stored as WebP)."""
    song_id = _uuid_param(song_id, "Song id")
    verse_id = _uuid_param(verse_id, "Verse id")
    if file is None:
        raise HTTPException(400, "An illustration file is required.")
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(400, "Only image uploads are allowed.")
    data = await file.read()
    if not data:
        raise HTTPException(400, "Illustration file cannot be empty.")

    try:
        async with db.begin():
            saved = await save_verse_illustration(db, storage, song_id, verse_id, data)
    except InvalidIllustrationError as e:
        raise HTTPException(400, "Uploaded file is not a valid image.") from e
    except SongVerseNotFoundError as e:
        raise HTTPException(404, "Song verse not found.") from e
    except (IllustrationProcessingError, IllustrationUploadError) as e:
        logger.exception("verse_illustration_store_failed song=%s verse=%s", song_id, verse_id)
        raise HTTPException(500, "Unable to store verse illustration") from e

    return saved.verse


__all__ = ["router"]

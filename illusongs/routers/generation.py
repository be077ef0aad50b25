from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..background import discard_files
from ..database import SessionFactory, get_db
from ..models import Song
from ..routes_shared import get_provider, get_session_factory, get_storage
from ..schemas import GenerationRunRead, JobListItemRead, RequeueRead, RequeueRequest
from ..services.generation_queue import UNSET, find_job_for_verse, list_jobs, reset_job
from ..services.generation_runner import process_next_job
from ..services.illustrations import LocalIllustrationStorage
from ..services.providers import ImageProvider
from ..utils import require_admin_user

logger = logging.getLogger(__name__)
router = APIRouter(tags=["admin", "generation"])


@router.get("/api/admin/jobs", response_model=list[JobListItemRead])
async def admin_job_list(
    limit: int = Query(50, ge=1, le=500),
    exclude_published: bool = Query(False),
    q: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin_user),
):
    return await list_jobs(db, limit=limit, exclude_published=exclude_published, search=q)


@router.post("/api/song-generation/dispatch", response_model=GenerationRunRead)
async def dispatch_generation_job(
    admin=Depends(require_admin_user),
    provider: ImageProvider = Depends(get_provider),
    storage: LocalIllustrationStorage = Depends(get_storage),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    try:
        result = await process_next_job(provider, storage, session_factory)
    except Exception as e:
        logger.exception("song_generation_dispatch_failed")
        raise HTTPException(500, f"Unable to process song generation job: {e}") from e
    if result is None:
        return Response(status_code=204)
    return result


@router.post("/api/song/{song_id}/verse/{verse_id}/requeue", response_model=RequeueRead)
async def requeue_verse_illustration(
    song_id: str,
    verse_id: str,
    payload: Optional[RequeueRequest] = Body(default=None),
    db: AsyncSession = Depends(get_db),
    storage: LocalIllustrationStorage = Depends(get_storage),
    admin=Depends(require_admin_user),
):
    direction = UNSET
    if payload is not None and "additional_prompt_direction" in payload.model_fields_set:
        direction = payload.additional_prompt_direction

    async with db.begin():
        job = await find_job_for_verse(db, song_id.strip().lower(), verse_id.strip().lower())
        published = None
        if job:
            published = (
                await db.execute(select(Song.is_published).where(Song.id == job.song_id))
            ).scalar_one_or_none()
        # published songs are frozen; unpublish before regenerating
        if not job or published:
            raise HTTPException(404, "No job found for this verse.")
        result = await reset_job(db, job.id, direction)
        if not result:
            raise HTTPException(404, "Unable to reset job for verse.")

    await discard_files(storage.delete, (result.image_path, result.thumbnail_path))

    return RequeueRead(job_id=result.job_id, verse_id=result.verse_id)


__all__ = ["router"]

# services/generation_runner.py
"""Process one queued verse illustration: claim, prompt, generate, store, record."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from illusongs.background import discard_files
from illusongs.database import SessionFactory, async_session_maker, transaction
from illusongs.services.generation_queue import (
    claim_next_job,
    fetch_artifacts_for_song,
    find_conversation,
    mark_job_completed,
    mark_job_failed,
    record_verse_artifact,
    upsert_conversation,
)
from illusongs.services.illustrations import (
    LocalIllustrationStorage,
    SavedIllustration,
    save_verse_illustration,
)
from illusongs.services.prompts import build_continuity_context, build_verse_prompt, previous_verses
from illusongs.services.providers import ImageProvider

logger = logging.getLogger(__name__)


@dataclass
class GenerationRunResult:
    job_id: str
    song_id: str
    verse_id: str
    verse_sequence: int
    provider: str
    model: str
    conversation_id: Optional[str]
    response_id: Optional[str]


async def _resolve_conversation(db, provider: ImageProvider, song_id: str) -> Optional[str]:
    if not provider.supports_conversations:
        return None
    existing = await find_conversation(db, song_id)
    conversation_id = existing.conversation_id if existing else str(uuid.uuid4())
    if not existing or existing.provider != provider.name or existing.model != provider.model:
        await upsert_conversation(
            db,
            song_id=song_id,
            provider=provider.name,
            model=provider.model,
            conversation_id=conversation_id,
        )
    return conversation_id


async def process_next_job(
    provider: ImageProvider,
    storage: LocalIllustrationStorage,
    session_factory: SessionFactory = async_session_maker,
) -> Optional[GenerationRunResult]:
    """Run at most one pending job. Returns None when the queue is empty.

    Exactly one provider call per claimed job. Any failure after the claim marks
    the job failed with the error text and re-raises; retrying is a reset.
    """
    async with transaction(session_factory) as db:
        claim = await claim_next_job(db)

    if claim is None:
        logger.info("song_generation_job_none_available provider=%s", provider.name)
        return None

    job, song, verse = claim.job, claim.song, claim.verse
    started = time.monotonic()
    generation_started: Optional[float] = None
    conversation_id: Optional[str] = None
    response_id: Optional[str] = None
    saved: Optional[SavedIllustration] = None
    logger.info(
        "song_generation_job_claimed job=%s song=%s verse=%s sequence=%s attempts=%s provider=%s model=%s",
        job.id, song.id, verse.id, verse.sequence_number, job.attempts, provider.name, provider.model,
    )

    try:
        async with transaction(session_factory) as db:
            artifacts = await fetch_artifacts_for_song(db, song.id)
            conversation_id = await _resolve_conversation(db, provider, song.id)
        artifacts_by_verse_id = {a.verse_id: a for a in artifacts}

        prompt = build_verse_prompt(song, verse, job.additional_prompt_direction)
        continuity = build_continuity_context(song, verse, artifacts_by_verse_id, storage.public_url)
        priors = previous_verses(song, verse)
        logger.info(
            "song_generation_prompt_created job=%s sequence=%s prompt_length=%d prior_verses=%d referenced_artifacts=%d",
            job.id, verse.sequence_number, len(prompt.full), len(priors),
            sum(1 for v in priors if v.id in artifacts_by_verse_id),
        )

        generation_started = time.monotonic()
        result = await provider.generate(prompt.full, continuity, conversation_id)
        response_id = result.response_id
        logger.info(
            "song_generation_image_generated job=%s sequence=%s response=%s duration=%.2fs",
            job.id, verse.sequence_number, response_id, time.monotonic() - generation_started,
        )

        async with transaction(session_factory) as db:
            saved = await save_verse_illustration(db, storage, song.id, verse.id, result.image_bytes)
            logger.info(
                "song_generation_verse_updated job=%s sequence=%s url=%s thumbnail=%s",
                job.id, verse.sequence_number, saved.verse.illustration_url, saved.thumbnail_path,
            )
            await record_verse_artifact(
                db,
                job_id=job.id,
                verse_id=verse.id,
                prompt=prompt.full,
                provider=provider.name,
                model=provider.model,
                image_url=saved.verse.illustration_url,
                image_path=saved.storage_path,
                thumbnail_path=saved.thumbnail_path,
                image_summary=result.summary_text,
            )
            await mark_job_completed(db, job.id)
    except Exception as exc:
        message = str(exc) or exc.__class__.__name__
        logger.error(
            "song_generation_job_failed job=%s song=%s sequence=%s conversation=%s response=%s total=%.2fs error=%s",
            job.id, song.id, verse.sequence_number, conversation_id, response_id,
            time.monotonic() - started, message,
        )
        if saved is not None:
            # the verse update rolled back with the transaction
            await discard_files(storage.delete, (saved.storage_path, saved.thumbnail_path))
        async with transaction(session_factory) as db:
            await mark_job_failed(db, job.id, message)
        raise

    logger.info(
        "song_generation_job_completed job=%s song=%s sequence=%s total=%.2fs",
        job.id, song.id, verse.sequence_number, time.monotonic() - started,
    )
    return GenerationRunResult(
        job_id=job.id,
        song_id=song.id,
        verse_id=verse.id,
        verse_sequence=verse.sequence_number,
        provider=provider.name,
        model=provider.model,
        conversation_id=conversation_id,
        response_id=response_id,
    )

import pytest
from sqlalchemy import select

from illusongs.models import GenerationConversation, GenerationJob, JobStatus, Song, Verse, VerseArtifact
from illusongs.services.generation_queue import (
    UNSET,
    JobNotFoundError,
    claim_next_job,
    enqueue_generation_jobs,
    fetch_artifacts_for_song,
    find_job_for_verse,
    list_jobs,
    mark_job_completed,
    mark_job_failed,
    record_verse_artifact,
    reset_job,
    upsert_conversation,
)


async def _song(db, slug="vinter", texts=("Første vers", "Andet vers"), published=False):
    song = Song(slug=slug, title=slug.title(), is_published=published)
    song.verses = [Verse(sequence_number=i + 1, lyric_text=t) for i, t in enumerate(texts)]
    db.add(song)
    await db.flush()
    return song


async def _jobs(db, song_id):
    return (
        await db.execute(select(GenerationJob).where(GenerationJob.song_id == song_id))
    ).scalars().all()


async def test_enqueue_is_idempotent(db):
    async with db.begin():
        song = await _song(db)
        await enqueue_generation_jobs(db, song.id, song.verses)
        await enqueue_generation_jobs(db, song.id, song.verses)
        jobs = await _jobs(db, song.id)

    assert len(jobs) == 2
    assert {j.verse_id for j in jobs} == {v.id for v in song.verses}
    assert all(j.status == JobStatus.pending and j.attempts == 0 for j in jobs)


async def test_claim_returns_lowest_sequence_first(db):
    async with db.begin():
        song = await _song(db)
        first, second = song.verses
        await enqueue_generation_jobs(db, song.id, [second, first])

        claim = await claim_next_job(db)

    assert claim.verse.id == first.id
    assert claim.verse.sequence_number == 1
    assert claim.song.id == song.id
    assert claim.job.status == JobStatus.in_progress
    assert claim.job.attempts == 1
    assert claim.job.started_at is not None


async def test_claim_orders_by_sequence_across_separate_enqueues(db):
    async with db.begin():
        song = await _song(db)
        first, second = song.verses
        await enqueue_generation_jobs(db, song.id, [second])
        await enqueue_generation_jobs(db, song.id, [first])

        claim = await claim_next_job(db)

    assert claim.verse.sequence_number == 1
    assert claim.verse.id == first.id


async def test_claim_skips_non_pending_and_returns_none_when_empty(db):
    async with db.begin():
        song = await _song(db, texts=("Kun et vers",))
        await enqueue_generation_jobs(db, song.id, song.verses)
        assert await claim_next_job(db) is not None
        assert await claim_next_job(db) is None


async def test_complete_and_fail_transitions(db):
    async with db.begin():
        song = await _song(db)
        await enqueue_generation_jobs(db, song.id, song.verses)
        claim = await claim_next_job(db)
        await mark_job_completed(db, claim.job.id)
        other = await claim_next_job(db)
        await mark_job_failed(db, other.job.id, "provider exploded")

    done = await db.get(GenerationJob, claim.job.id, populate_existing=True)
    failed = await db.get(GenerationJob, other.job.id, populate_existing=True)
    assert done.status == JobStatus.completed
    assert done.completed_at is not None
    assert done.last_error is None
    assert failed.status == JobStatus.failed
    assert failed.last_error == "provider exploded"
    assert failed.completed_at is None


async def test_transitions_on_missing_job_raise(db):
    async with db.begin():
        with pytest.raises(JobNotFoundError):
            await mark_job_completed(db, "missing")
        with pytest.raises(JobNotFoundError):
            await mark_job_failed(db, "missing", "boom")


async def _completed_with_artifact(db, direction=None):
    song = await _song(db, texts=("Et vers",))
    verse = song.verses[0]
    await enqueue_generation_jobs(db, song.id, song.verses)
    claim = await claim_next_job(db)
    await mark_job_failed(db, claim.job.id, "first try failed")
    job = await db.get(GenerationJob, claim.job.id, populate_existing=True)
    job.additional_prompt_direction = direction
    await db.flush()
    await record_verse_artifact(
        db,
        job_id=job.id,
        verse_id=verse.id,
        prompt="prompt",
        provider="openrouter",
        model="m",
        image_url="/static/illustrations/a/b/main.webp",
        image_path="a/b/main.webp",
        thumbnail_path="a/b/thumb.webp",
        image_summary="A cat in the snow",
    )
    verse.illustration_url = "/static/illustrations/a/b/main.webp"
    await db.flush()
    return song, verse, job


async def test_reset_clears_state_and_returns_blob_paths(db):
    async with db.begin():
        song, verse, job = await _completed_with_artifact(db, direction="Mere sne")
        result = await reset_job(db, job.id)

    assert result.job_id == job.id
    assert result.verse_id == verse.id
    assert result.image_path == "a/b/main.webp"
    assert result.thumbnail_path == "a/b/thumb.webp"

    job = await db.get(GenerationJob, job.id, populate_existing=True)
    verse = await db.get(Verse, verse.id, populate_existing=True)
    assert job.status == JobStatus.pending
    assert job.started_at is None and job.completed_at is None and job.last_error is None
    assert job.attempts == 1
    assert job.additional_prompt_direction == "Mere sne"
    assert verse.illustration_url is None
    assert await fetch_artifacts_for_song(db, song.id) == []


@pytest.mark.parametrize(
    "update, expected",
    [
        (UNSET, "Mere sne"),
        (None, None),
        ("  Tegn en hund  ", "Tegn en hund"),
        ("   ", None),
    ],
)
async def test_reset_direction_is_tri_state(db, update, expected):
    async with db.begin():
        _, _, job = await _completed_with_artifact(db, direction="Mere sne")
        await reset_job(db, job.id, update)

    job = await db.get(GenerationJob, job.id, populate_existing=True)
    assert job.additional_prompt_direction == expected


async def test_reset_missing_job_returns_none(db):
    async with db.begin():
        assert await reset_job(db, "missing") is None


async def test_record_artifact_upserts_per_verse(db):
    async with db.begin():
        song, verse, job = await _completed_with_artifact(db)
        await record_verse_artifact(
            db,
            job_id=job.id,
            verse_id=verse.id,
            prompt="second prompt",
            provider="openai_images",
            model="gpt-image-1",
            image_url=None,
            image_path="a/b/main2.webp",
            thumbnail_path=None,
            image_summary=None,
        )
        artifacts = (await db.execute(select(VerseArtifact))).scalars().all()

    assert len(artifacts) == 1
    await db.refresh(artifacts[0])
    assert artifacts[0].prompt == "second prompt"
    assert artifacts[0].provider == "openai_images"


async def test_find_job_for_verse(db):
    async with db.begin():
        song = await _song(db)
        await enqueue_generation_jobs(db, song.id, song.verses)
        found = await find_job_for_verse(db, song.id, song.verses[1].id)
        missing = await find_job_for_verse(db, "other-song", song.verses[1].id)

    assert found.verse_id == song.verses[1].id
    assert missing is None


async def test_list_jobs_filters_and_joins(db):
    async with db.begin():
        draft = await _song(db, slug="sommer", texts=("Solen skinner", "Bølger"))
        live = await _song(db, slug="vinter", texts=("Sneen falder",), published=True)
        await enqueue_generation_jobs(db, draft.id, draft.verses)
        await enqueue_generation_jobs(db, live.id, live.verses)
        await upsert_conversation(
            db, song_id=draft.id, provider="openrouter", model="m", conversation_id="conv-1"
        )

        everything = await list_jobs(db)
        drafts_only = await list_jobs(db, exclude_published=True)
        by_lyric = await list_jobs(db, search="SNEEN")
        limited = await list_jobs(db, limit=1)

    assert len(everything) == 3
    assert {item.song_slug for item in drafts_only} == {"sommer"}
    assert all(item.conversation_id == "conv-1" for item in drafts_only)
    assert [item.verse_lyric for item in by_lyric] == ["Sneen falder"]
    assert by_lyric[0].song_is_published is True
    assert by_lyric[0].conversation_id is None
    assert len(limited) == 1


async def test_upsert_conversation_replaces_existing(db):
    async with db.begin():
        song = await _song(db)
        await upsert_conversation(db, song_id=song.id, provider="openrouter", model="a", conversation_id="c1")
        await upsert_conversation(db, song_id=song.id, provider="openrouter", model="b", conversation_id="c1")
        rows = (await db.execute(select(GenerationConversation))).scalars().all()

    assert len(rows) == 1
    await db.refresh(rows[0])
    assert rows[0].model == "b"

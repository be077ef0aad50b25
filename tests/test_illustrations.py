import io

import pytest
from PIL import Image

from illusongs.database import transaction
from illusongs.services.illustrations import (
    InvalidIllustrationError,
    SongVerseNotFoundError,
    build_object_path,
    convert_to_webp,
    make_thumbnail,
    save_verse_illustration,
)
from illusongs.services.songs import create_song_draft


def _open(data):
    img = Image.open(io.BytesIO(data))
    return img.format, img.size


def test_convert_to_webp_shrinks_large_images():
    out = io.BytesIO()
    Image.new("RGB", (3000, 1500), (10, 20, 30)).save(out, format="PNG")
    fmt, size = _open(convert_to_webp(out.getvalue()))
    assert fmt == "WEBP"
    assert size == (2048, 1024)


def test_convert_to_webp_never_enlarges(png_bytes):
    fmt, size = _open(convert_to_webp(png_bytes))
    assert fmt == "WEBP"
    assert size == (64, 96)


def test_make_thumbnail_fits_box():
    out = io.BytesIO()
    Image.new("RGBA", (1024, 1536), (10, 20, 30, 255)).save(out, format="PNG")
    fmt, size = _open(make_thumbnail(out.getvalue(), size=512))
    assert fmt == "WEBP"
    assert max(size) == 512


def test_non_image_bytes_are_rejected():
    with pytest.raises(InvalidIllustrationError):
        convert_to_webp(b"definitely not an image")


def test_object_path_layout():
    path = build_object_path("Song-1", "verse_2", "thumbnail")
    song, verse, name = path.split("/")
    assert (song, verse) == ("song-1", "verse-2")
    assert name.startswith("thumb-") and name.endswith(".webp")
    assert build_object_path("s", "v").split("/")[-1].startswith("main-")


def test_storage_upload_and_delete(storage):
    stored = storage.upload("s1", "v1", b"webp-bytes")
    assert stored.public_url == f"/static/illustrations/{stored.path}"
    target = storage.root / stored.path
    assert target.read_bytes() == b"webp-bytes"

    storage.delete(stored.path)
    assert not target.exists()
    storage.delete(stored.path)  # already gone
    storage.delete(None)


def test_storage_refuses_paths_outside_root(storage):
    with pytest.raises(ValueError):
        storage.delete("../../etc/passwd")


def test_public_url_of_blank_path(storage):
    assert storage.public_url(None) is None
    assert storage.public_url("  ") is None


async def test_save_verse_illustration_updates_verse(session_factory, storage, png_bytes):
    async with transaction(session_factory) as db:
        song = await create_song_draft(db, "Sommer", "Solen skinner")
    verse = song.verses[0]

    async with transaction(session_factory) as db:
        saved = await save_verse_illustration(db, storage, song.id, verse.id, png_bytes)

    assert saved.verse.illustration_url == storage.public_url(saved.storage_path)
    assert (storage.root / saved.storage_path).exists()
    assert (storage.root / saved.thumbnail_path).exists()
    assert "/thumb-" in saved.thumbnail_path


async def test_save_verse_illustration_for_unknown_verse(session_factory, storage, png_bytes):
    async with transaction(session_factory) as db:
        song = await create_song_draft(db, "Sommer", "Solen skinner")

    with pytest.raises(SongVerseNotFoundError):
        async with transaction(session_factory) as db:
            await save_verse_illustration(db, storage, song.id, "missing-verse", png_bytes)

    assert list(storage.root.rglob("*.webp")) == []

# services/illustrations.py
"""Verse illustration files: WebP conversion, local storage, verse URL updates."""
from __future__ import annotations

import io
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from illusongs.background import discard_files, run_sync
from illusongs.models import Verse
from illusongs.settings.config import settings

logger = logging.getLogger(__name__)

WEBP_QUALITY = 82
WEBP_METHOD = 6
MAX_DIMENSION = 2048
THUMBNAIL_SIZE = 512

Variant = Literal["main", "thumbnail"]


class InvalidIllustrationError(ValueError):
    pass


class IllustrationProcessingError(RuntimeError):
    pass


class IllustrationUploadError(RuntimeError):
    pass


class SongVerseNotFoundError(LookupError):
    pass


# ---- conversion ----
def _open(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidIllustrationError("Provided file is not a supported image.") from e
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    return img


def _encode_webp(img: Image.Image) -> bytes:
    out = io.BytesIO()
    try:
        img.save(out, format="WEBP", quality=WEBP_QUALITY, method=WEBP_METHOD)
    except (OSError, ValueError) as e:
        raise IllustrationProcessingError("Failed to process verse illustration.") from e
    return out.getvalue()


def convert_to_webp(image_bytes: bytes, max_dimension: int = MAX_DIMENSION) -> bytes:
    """Re-encode as WebP, shrinking (never enlarging) to fit max_dimension."""
    img = _open(image_bytes)
    if img.width > max_dimension or img.height > max_dimension:
        img.thumbnail((max_dimension, max_dimension))
    return _encode_webp(img)


def make_thumbnail(image_bytes: bytes, size: int = THUMBNAIL_SIZE) -> bytes:
    img = _open(image_bytes)
    img.thumbnail((size, size))
    return _encode_webp(img)


# ---- storage ----
@dataclass
class StoredIllustration:
    public_url: str
    path: str


def _segment(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9-]", "-", value).lower()


def build_object_path(song_id: str, verse_id: str, variant: Variant = "main") -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
    prefix = "thumb" if variant == "thumbnail" else "main"
    return f"{_segment(song_id)}/{_segment(verse_id)}/{prefix}-{stamp}-{uuid.uuid4().hex[:8]}.webp"


class LocalIllustrationStorage:
    """
    Places files under:
      <root>/<song_id>/<verse_id>/(main|thumb)-<timestamp>-<suffix>.webp
    and serves them from <public_base>/<same relative path>.
    """
    def __init__(self, root: Path | str, public_base: str):
        self.root = Path(root)
        self.public_base = public_base.rstrip("/")

    def public_url(self, path: Optional[str]) -> Optional[str]:
        if not path or not path.strip():
            return None
        return f"{self.public_base}/{path.lstrip('/')}"

    def upload(self, song_id: str, verse_id: str, image: bytes, variant: Variant = "main") -> StoredIllustration:
        rel = build_object_path(song_id, verse_id, variant)
        dest = self.root / rel
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(image)
        except OSError as e:
            raise IllustrationUploadError(f"Failed to store illustration at {rel}.") from e
        return StoredIllustration(public_url=self.public_url(rel), path=rel)

    def delete(self, path: Optional[str]) -> None:
        if not path or not path.strip():
            return
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Refusing to delete outside illustration root: {path}")
        target.unlink(missing_ok=True)


def storage_from_settings() -> LocalIllustrationStorage:
    return LocalIllustrationStorage(settings.ILLUSTRATIONS_ROOT, settings.ILLUSTRATIONS_PUBLIC_BASE)


# ---- verse update ----
@dataclass
class SavedIllustration:
    verse: Verse
    storage_path: str
    thumbnail_path: str


async def save_verse_illustration(
    db: AsyncSession,
    storage: LocalIllustrationStorage,
    song_id: str,
    verse_id: str,
    image_bytes: bytes,
) -> SavedIllustration:
    """Convert, upload (main + thumbnail) and point the verse at the new image.

    Files already uploaded are removed again when a later step fails.
    """
    webp = await run_sync(convert_to_webp, image_bytes)
    thumbnail = await run_sync(make_thumbnail, image_bytes)
    main = await run_sync(storage.upload, song_id, verse_id, webp, "main")
    uploaded = [main.path]
    try:
        thumb = await run_sync(storage.upload, song_id, verse_id, thumbnail, "thumbnail")
        uploaded.append(thumb.path)

        result = await db.execute(
            update(Verse)
            .where(Verse.id == verse_id, Verse.song_id == song_id)
            .values(illustration_url=main.public_url, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SongVerseNotFoundError("Song verse not found.")

        verse = (
            await db.execute(
                select(Verse).where(Verse.id == verse_id).execution_options(populate_existing=True)
            )
        ).scalars().one()
    except Exception:
        await discard_files(storage.delete, uploaded)
        raise
    logger.info("Stored illustration for verse %s at %s", verse_id, main.path)
    return SavedIllustration(verse=verse, storage_path=main.path, thumbnail_path=thumb.path)

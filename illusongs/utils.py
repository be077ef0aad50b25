import logging
import re
import secrets
import unicodedata
from typing import Iterable, Optional

from fastapi import Header, HTTPException, status

from .settings.config import settings

logger = logging.getLogger(__name__)

_SCANDINAVIAN = (("æ", "ae"), ("ø", "o"), ("å", "aa"))


async def require_admin_user(x_admin_token: Optional[str] = Header(default=None)):
    """Gate admin endpoints on the shared ADMIN_API_TOKEN secret."""
    expected = (settings.ADMIN_API_TOKEN or "").strip()
    if not x_admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not expected:
        logger.warning("Admin request rejected: ADMIN_API_TOKEN is not configured")
    if not expected or not secrets.compare_digest(x_admin_token.strip().encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return True


def slugify(s: str) -> str:
    """URL-safe slug: lowercase ascii letters, digits and single dashes."""
    s = (s or "").strip().lower()
    for src, dst in _SCANDINAVIAN:
        s = s.replace(src, dst)
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"[^a-z0-9-]+", "-", s)
    return re.sub(r"-+", "-", s).strip("-")


def normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    """Trim, lowercase and dedupe tags, keeping first-seen order."""
    out: list[str] = []
    for tag in tags or []:
        value = (tag or "").strip().lower()
        if value and value not in out:
            out.append(value)
    return out


def split_song_verses(raw: str) -> list[str]:
    """Split lyric text into verses on blank lines; segments are trimmed, empties dropped."""
    normalized = (raw or "").replace("\r\n", "\n").strip()
    if not normalized:
        return []
    return [seg.strip() for seg in re.split(r"\n\s*\n", normalized) if seg.strip()]

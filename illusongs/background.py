"""Blocking image and file work pushed off the event loop."""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


async def run_sync(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run `func(*args, **kwargs)` in the default executor and await it."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


async def discard_files(delete: Callable[[str], None], paths: Iterable[Optional[str]]) -> int:
    """Delete each non-empty path; failures are logged and skipped.

    Returns how many deletions went through.
    """
    removed = 0
    for path in paths:
        if not path:
            continue
        try:
            await run_sync(delete, path)
        except Exception:
            logger.exception("Failed to delete orphaned illustration %s", path)
            continue
        removed += 1
    return removed


__all__ = ["run_sync", "discard_files"]

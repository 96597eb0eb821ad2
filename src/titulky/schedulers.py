"""Background scheduler coroutines for the durable index and local cache."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from titulky.state import AppState

log = structlog.get_logger()


async def run_store_index_loader(state: AppState) -> None:
    """Load the durable-store index once, off the startup path.

    Searches made before it finishes simply see fewer subtitles marked as
    cached; serving is unaffected because it reads the store directly.
    """
    try:
        await state.cache.load_index()
    except Exception:
        log.warning("store_index_load_error", exc_info=True)


async def run_local_cache_sweeper(state: AppState) -> None:
    """Drop expired in-process cache entries on the configured interval."""
    interval = state.settings.cache.sweep_interval_seconds
    while True:
        await asyncio.sleep(interval)
        state.cache.sweep_expired()

"""Two-tier subtitle cache with per-id download coalescing.

Lookup order for one subtitle id:
  1. In-process tier: dict of CacheEntry, valid for ``memory_ttl_seconds``
  2. Durable tier:    ObjectStoreProtocol, key ``subs/<id>.srt``, no expiry
  3. Origin:          DownloaderProtocol, at most one fetch in flight per id

``serve`` never raises. Every failure on the origin path (CAPTCHA, missing
link, corrupt archive, network error, bug) degrades to a one-cue subtitle
telling the viewer the daily download limit is exhausted, so the player
always receives something playable.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

import structlog

from titulky.convert import ensure_utf8
from titulky.models.cache import CacheEntry
from titulky.models.subtitle import ServedSubtitle

if TYPE_CHECKING:
    from collections.abc import Callable

    from titulky.protocols import DownloaderProtocol, ObjectStoreProtocol

log = structlog.get_logger()

STORE_PREFIX = "subs/"
STORE_SUFFIX = ".srt"

LIMIT_MESSAGE_TEXT = (
    "Překročili jste denní limit stažení titulků z Titulky.com. "
    "Stáhněte titulky které jsou v cachi (označené ✅) "
    "nebo počkejte na reset limitu do dalšího dne."
)
LIMIT_FILENAME = "limit.srt"


def limit_message(vtt: bool = False) -> str:
    """The placeholder subtitle served when the origin refuses a download."""
    if vtt:
        return f"WEBVTT\n\n1\n00:00:01.000 --> 00:00:30.000\n{LIMIT_MESSAGE_TEXT}\n"
    return f"1\n00:00:01,000 --> 00:00:30,000\n{LIMIT_MESSAGE_TEXT}\n"


def _served(entry: CacheEntry, source: Literal["memory", "store", "origin"]) -> ServedSubtitle:
    return ServedSubtitle(content=entry.content, filename=entry.filename, source=source)


def _limited() -> ServedSubtitle:
    return ServedSubtitle(content=limit_message(), filename=LIMIT_FILENAME, source="limit")


def store_key(subtitle_id: str) -> str:
    return f"{STORE_PREFIX}{subtitle_id}{STORE_SUFFIX}"


def subtitle_id_from_key(key: str) -> str | None:
    if not key.startswith(STORE_PREFIX) or not key.endswith(STORE_SUFFIX):
        return None
    subtitle_id = key[len(STORE_PREFIX) : -len(STORE_SUFFIX)]
    return subtitle_id or None


class SubtitleCache:
    """Serves subtitle text by id from memory, the durable store, or the origin."""

    def __init__(
        self,
        store: ObjectStoreProtocol,
        downloader: DownloaderProtocol,
        *,
        memory_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._downloader = downloader
        self._ttl = memory_ttl_seconds
        self._clock = clock
        # id -> (inserted_at per clock, entry)
        self._local: dict[str, tuple[float, CacheEntry]] = {}
        self._known_ids: set[str] = set()
        self._inflight: dict[str, asyncio.Task[ServedSubtitle]] = {}

    # ------------------------------------------------------------------
    # Durable index
    # ------------------------------------------------------------------

    async def load_index(self) -> int:
        """Populate the in-memory index of durable ids. Returns its size."""
        keys = await self._store.list_keys(STORE_PREFIX)
        for key in keys:
            subtitle_id = subtitle_id_from_key(key)
            if subtitle_id is not None:
                self._known_ids.add(subtitle_id)
        log.info("store_index_loaded", count=len(self._known_ids))
        return len(self._known_ids)

    def is_cached(self, subtitle_id: str) -> bool:
        return subtitle_id in self._known_ids

    @property
    def cached_ids(self) -> frozenset[str]:
        return frozenset(self._known_ids)

    def is_downloading(self, subtitle_id: str) -> bool:
        return subtitle_id in self._inflight

    # ------------------------------------------------------------------
    # In-process tier
    # ------------------------------------------------------------------

    def get_local(self, subtitle_id: str) -> CacheEntry | None:
        """Return a fresh local entry; an expired one is dropped on read."""
        item = self._local.get(subtitle_id)
        if item is None:
            return None
        inserted_at, entry = item
        if self._clock() - inserted_at >= self._ttl:
            del self._local[subtitle_id]
            return None
        return entry

    def put_local(self, entry: CacheEntry) -> None:
        self._local[entry.subtitle_id] = (self._clock(), entry)

    def sweep_expired(self) -> int:
        """Drop every expired local entry. Returns how many were removed."""
        now = self._clock()
        expired = [
            key for key, (inserted_at, _) in self._local.items() if now - inserted_at >= self._ttl
        ]
        for key in expired:
            del self._local[key]
        if expired:
            log.debug("local_cache_swept", removed=len(expired), remaining=len(self._local))
        return len(expired)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def serve(
        self,
        subtitle_id: str,
        link_file: str,
        *,
        downloader: DownloaderProtocol | None = None,
    ) -> ServedSubtitle:
        """Return the subtitle for ``subtitle_id``, downloading it at most once.

        Concurrent callers for the same id while a download is in flight
        wait for that download instead of starting their own. If it failed
        they get the same limit message; if it succeeded they read the
        freshly cached entry.

        ``downloader`` replaces the default one for this call, so a download
        can run under the requesting account. A caller that joins a download
        already in flight gets that download's result whichever account ran it.
        """
        while True:
            entry = self.get_local(subtitle_id)
            if entry is not None:
                log.debug("subtitle_cache_hit", subtitle_id=subtitle_id, tier="memory")
                return _served(entry, "memory")

            entry = await self._get_durable(subtitle_id)
            if entry is not None:
                log.debug("subtitle_cache_hit", subtitle_id=subtitle_id, tier="store")
                self.put_local(entry)
                return _served(entry, "store")

            leader = self._inflight.get(subtitle_id)
            if leader is None:
                return await self._lead(subtitle_id, link_file, downloader or self._downloader)

            log.info("subtitle_download_wait", subtitle_id=subtitle_id)
            outcome = await asyncio.shield(leader)
            if outcome.limited:
                return outcome

            entry = self.get_local(subtitle_id)
            if entry is not None:
                return _served(entry, "memory")
            # The leader succeeded but its entry is already gone; look again.

    async def _lead(
        self, subtitle_id: str, link_file: str, downloader: DownloaderProtocol
    ) -> ServedSubtitle:
        task = asyncio.create_task(self._download(subtitle_id, link_file, downloader))
        self._inflight[subtitle_id] = task
        return await asyncio.shield(task)

    async def _download(
        self, subtitle_id: str, link_file: str, downloader: DownloaderProtocol
    ) -> ServedSubtitle:
        try:
            files = await downloader.fetch(subtitle_id, link_file)
            if not files:
                log.warning("subtitle_download_unavailable", subtitle_id=subtitle_id)
                return _limited()

            first = files[0]
            entry = CacheEntry(
                subtitle_id=subtitle_id,
                content=ensure_utf8(first.content),
                filename=first.filename,
                stored_at=datetime.now(UTC),
            )
            self.put_local(entry)
            await self._put_durable(entry)
            log.info("subtitle_downloaded", subtitle_id=subtitle_id, filename=entry.filename)
            return _served(entry, "origin")
        except Exception:
            log.error("subtitle_download_error", subtitle_id=subtitle_id, exc_info=True)
            return _limited()
        finally:
            if self._inflight.get(subtitle_id) is asyncio.current_task():
                del self._inflight[subtitle_id]

    # ------------------------------------------------------------------
    # Durable tier
    # ------------------------------------------------------------------

    async def _get_durable(self, subtitle_id: str) -> CacheEntry | None:
        stored = await self._store.get(store_key(subtitle_id))
        if stored is None:
            return None
        self._known_ids.add(subtitle_id)
        return CacheEntry(
            subtitle_id=subtitle_id,
            content=stored.data.decode("utf-8", errors="replace"),
            filename=stored.metadata.get("filename") or f"{subtitle_id}{STORE_SUFFIX}",
            stored_at=stored.stored_at,
        )

    async def _put_durable(self, entry: CacheEntry) -> None:
        await self._store.put(
            store_key(entry.subtitle_id),
            entry.content.encode("utf-8"),
            {"filename": entry.filename},
        )
        self._known_ids.add(entry.subtitle_id)

"""Unit tests for titulky.cache."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from titulky.cache import (
    LIMIT_FILENAME,
    LIMIT_MESSAGE_TEXT,
    SubtitleCache,
    limit_message,
    store_key,
    subtitle_id_from_key,
)
from titulky.models.subtitle import ExtractedSubtitleFile

if TYPE_CHECKING:
    from titulky.protocols import ObjectStoreProtocol
    from titulky.store import SqliteObjectStore

SRT_TEXT = "1\n00:00:01,000 --> 00:00:02,000\nŽluťoučký kůň\n"


class FakeDownloader:
    """Counts fetches; optionally holds them until ``release`` is set."""

    def __init__(
        self,
        files: list[ExtractedSubtitleFile] | None = None,
        *,
        hold: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.files = files
        self.error = error
        self.calls: list[str] = []
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    async def fetch(self, subtitle_id: str, link_file: str) -> list[ExtractedSubtitleFile] | None:
        self.calls.append(subtitle_id)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.files


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _files(text: str = SRT_TEXT, encoding: str = "cp1250") -> list[ExtractedSubtitleFile]:
    return [ExtractedSubtitleFile(filename="movie.srt", content=text.encode(encoding))]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestKeys:
    def test_store_key(self) -> None:
        assert store_key("123456") == "subs/123456.srt"

    def test_subtitle_id_from_key(self) -> None:
        assert subtitle_id_from_key("subs/123456.srt") == "123456"
        assert subtitle_id_from_key("subs/.srt") is None
        assert subtitle_id_from_key("other/123456.srt") is None
        assert subtitle_id_from_key("subs/123456.ass") is None

    def test_limit_message_formats(self) -> None:
        srt = limit_message()
        assert srt.startswith("1\n00:00:01,000 --> 00:00:30,000\n")
        assert LIMIT_MESSAGE_TEXT in srt
        vtt = limit_message(vtt=True)
        assert vtt.startswith("WEBVTT\n\n1\n00:00:01.000 --> 00:00:30.000\n")


# ---------------------------------------------------------------------------
# Serving
# ---------------------------------------------------------------------------


class TestServe:
    async def test_origin_download_is_normalised_and_persisted(
        self, store: SqliteObjectStore
    ) -> None:
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(store, downloader)

        served = await cache.serve("123456", "movie-123456")

        assert served.source == "origin"
        assert served.content == SRT_TEXT
        assert served.filename == "movie.srt"
        assert cache.is_cached("123456")

        stored = await store.get("subs/123456.srt")
        assert stored is not None
        assert stored.data.decode("utf-8") == SRT_TEXT
        assert stored.metadata == {"filename": "movie.srt"}

    async def test_second_serve_hits_memory(self, store: SqliteObjectStore) -> None:
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(store, downloader)

        await cache.serve("123456", "movie-123456")
        served = await cache.serve("123456", "movie-123456")

        assert served.source == "memory"
        assert downloader.calls == ["123456"]

    async def test_durable_hit_skips_origin(self, store: SqliteObjectStore) -> None:
        await store.put("subs/123456.srt", SRT_TEXT.encode(), {"filename": "orig.srt"})
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(store, downloader)

        served = await cache.serve("123456", "movie-123456")

        assert served.source == "store"
        assert served.content == SRT_TEXT
        assert served.filename == "orig.srt"
        assert downloader.calls == []
        # Promoted into the in-process tier
        assert cache.get_local("123456") is not None

    async def test_durable_hit_without_filename(self, store: SqliteObjectStore) -> None:
        await store.put("subs/123456.srt", SRT_TEXT.encode())
        cache = SubtitleCache(store, FakeDownloader())
        served = await cache.serve("123456", "movie-123456")
        assert served.filename == "123456.srt"

    async def test_corrupt_durable_row_falls_through_to_origin(
        self, store: SqliteObjectStore
    ) -> None:
        await store._db.execute(
            "INSERT INTO objects (key, data, metadata, stored_at) VALUES (?, ?, ?, ?)",
            ("subs/123456.srt", b"stale", "not-json", "2026-01-01T00:00:00+00:00"),
        )
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(store, downloader)

        served = await cache.serve("123456", "movie-123456")

        assert served.source == "origin"
        assert served.content == SRT_TEXT
        assert downloader.calls == ["123456"]
        # The download replaced the broken row
        stored = await store.get("subs/123456.srt")
        assert stored is not None
        assert stored.metadata == {"filename": "movie.srt"}

    async def test_empty_download_yields_limit_message(self, store: SqliteObjectStore) -> None:
        cache = SubtitleCache(store, FakeDownloader(None))

        served = await cache.serve("123456", "movie-123456")

        assert served.limited
        assert served.filename == LIMIT_FILENAME
        assert served.content == limit_message()
        assert not cache.is_cached("123456")
        assert await store.get("subs/123456.srt") is None

    async def test_unexpected_error_yields_limit_message(self, store: SqliteObjectStore) -> None:
        cache = SubtitleCache(store, FakeDownloader(error=RuntimeError("boom")))
        served = await cache.serve("123456", "movie-123456")
        assert served.limited
        assert not cache.is_downloading("123456")

    async def test_per_call_downloader_replaces_default(self, store: SqliteObjectStore) -> None:
        default = FakeDownloader(_files())
        account = FakeDownloader(_files("1\n00:00:01,000 --> 00:00:02,000\nJiný\n"))
        cache = SubtitleCache(store, default)

        served = await cache.serve("123456", "movie-123456", downloader=account)

        assert served.content.endswith("Jiný\n")
        assert default.calls == []
        assert account.calls == ["123456"]

    async def test_failure_is_not_cached(self, store: SqliteObjectStore) -> None:
        downloader = FakeDownloader(None)
        cache = SubtitleCache(store, downloader)

        await cache.serve("123456", "movie-123456")
        downloader.files = _files()
        served = await cache.serve("123456", "movie-123456")

        assert served.source == "origin"
        assert downloader.calls == ["123456", "123456"]


class TestCoalescing:
    async def test_concurrent_serves_share_one_download(
        self, memory_store: ObjectStoreProtocol
    ) -> None:
        downloader = FakeDownloader(_files(), hold=True)
        cache = SubtitleCache(memory_store, downloader)

        tasks = [asyncio.create_task(cache.serve("123456", "movie-123456")) for _ in range(5)]
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert cache.is_downloading("123456")

        downloader.release.set()
        results = await asyncio.gather(*tasks)

        assert downloader.calls == ["123456"]
        assert {r.content for r in results} == {SRT_TEXT}
        assert not cache.is_downloading("123456")

    async def test_concurrent_failure_gives_everyone_the_limit(
        self, memory_store: ObjectStoreProtocol
    ) -> None:
        downloader = FakeDownloader(None, hold=True)
        cache = SubtitleCache(memory_store, downloader)

        tasks = [asyncio.create_task(cache.serve("123456", "movie-123456")) for _ in range(3)]
        await asyncio.sleep(0)
        downloader.release.set()
        results = await asyncio.gather(*tasks)

        assert downloader.calls == ["123456"]
        assert all(r.limited for r in results)

    async def test_different_ids_download_independently(
        self, memory_store: ObjectStoreProtocol
    ) -> None:
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(memory_store, downloader)

        await asyncio.gather(
            cache.serve("111111", "a-111111"),
            cache.serve("222222", "b-222222"),
        )

        assert sorted(downloader.calls) == ["111111", "222222"]

    async def test_cancelled_caller_does_not_abort_download(
        self, memory_store: ObjectStoreProtocol
    ) -> None:
        downloader = FakeDownloader(_files(), hold=True)
        cache = SubtitleCache(memory_store, downloader)

        first = asyncio.create_task(cache.serve("123456", "movie-123456"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)

        second = asyncio.create_task(cache.serve("123456", "movie-123456"))
        await asyncio.sleep(0)
        downloader.release.set()
        served = await second

        assert served.content == SRT_TEXT
        assert downloader.calls == ["123456"]


# ---------------------------------------------------------------------------
# In-process tier
# ---------------------------------------------------------------------------


class TestLocalTier:
    async def test_entry_expires_after_ttl(self, store: SqliteObjectStore) -> None:
        clock = FakeClock()
        downloader = FakeDownloader(_files())
        cache = SubtitleCache(store, downloader, memory_ttl_seconds=60, clock=clock)

        await cache.serve("123456", "movie-123456")
        clock.now += 59
        assert cache.get_local("123456") is not None
        clock.now += 1
        assert cache.get_local("123456") is None

        # Expired locally, still durable
        served = await cache.serve("123456", "movie-123456")
        assert served.source == "store"
        assert downloader.calls == ["123456"]

    async def test_sweep_expired(self, store: SqliteObjectStore) -> None:
        clock = FakeClock()
        cache = SubtitleCache(store, FakeDownloader(_files()), memory_ttl_seconds=60, clock=clock)

        await cache.serve("111111", "a-111111")
        clock.now += 30
        await cache.serve("222222", "b-222222")
        clock.now += 31

        assert cache.sweep_expired() == 1
        assert cache.get_local("111111") is None
        assert cache.get_local("222222") is not None
        assert cache.sweep_expired() == 0


# ---------------------------------------------------------------------------
# Durable index
# ---------------------------------------------------------------------------


class TestIndex:
    async def test_load_index(self, store: SqliteObjectStore) -> None:
        await store.put("subs/111111.srt", b"x")
        await store.put("subs/222222.srt", b"x")
        await store.put("other/333333.srt", b"x")
        cache = SubtitleCache(store, FakeDownloader())

        assert await cache.load_index() == 2
        assert cache.cached_ids == frozenset({"111111", "222222"})
        assert cache.is_cached("111111")
        assert not cache.is_cached("333333")

    async def test_empty_store(self, store: SqliteObjectStore) -> None:
        cache = SubtitleCache(store, FakeDownloader())
        assert await cache.load_index() == 0
        assert cache.cached_ids == frozenset()

"""Shared test fixtures for the titulky test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from titulky.config import DownloadSettings, SiteSettings
from titulky.models.cache import StoredObject
from titulky.models.search import SearchResult
from titulky.store import SqliteObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

BASE_URL = "https://titulky.test"


@pytest.fixture()
def site_settings() -> SiteSettings:
    return SiteSettings(base_url=BASE_URL, username="alice", password="secret")


@pytest.fixture()
def download_settings() -> DownloadSettings:
    return DownloadSettings(max_wait_seconds=5.0)


@pytest.fixture()
def sample_results() -> list[SearchResult]:
    """Listing rows for one movie plus an unrelated sequel."""
    return [
        SearchResult(
            id="100001",
            link_file="iron-man-100001",
            title="Iron Man",
            version="Iron.Man.2008.720p.BluRay.x264",
        ),
        SearchResult(
            id="100002",
            link_file="iron-man-100002",
            title="Iron Man",
            version="Iron.Man.2008.2160p.WEB-DL.x265",
        ),
        SearchResult(
            id="100003",
            link_file="iron-man-100003",
            title="Iron Man",
            version="Iron.Man.2008.DVDRip.XviD",
        ),
        SearchResult(
            id="200001",
            link_file="iron-man-2-200001",
            title="Iron Man 2",
            version="Iron.Man.2.2010.1080p.BluRay.x264",
        ),
    ]


@pytest.fixture()
async def store() -> AsyncIterator[SqliteObjectStore]:
    """Object store backed by in-memory SQLite."""
    async with aiosqlite.connect(":memory:") as db:
        object_store = SqliteObjectStore(db)
        await object_store.init_db()
        yield object_store


class MemoryObjectStore:
    """Dict-backed ObjectStoreProtocol whose calls never suspend."""

    def __init__(self) -> None:
        self.objects: dict[str, StoredObject] = {}

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))

    async def get(self, key: str) -> StoredObject | None:
        return self.objects.get(key)

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        self.objects[key] = StoredObject(
            key=key, data=data, metadata=metadata or {}, stored_at=datetime.now(UTC)
        )


@pytest.fixture()
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()

"""Integration test fixtures.

Provides a fully wired AppState: a real SessionPool, SearchEngine,
DownloadPipeline and SubtitleCache over in-memory SQLite, with the origin
mocked by respx in each test and an in-process title resolver.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal
from unittest.mock import AsyncMock

import aiosqlite
import httpx
import pytest

from titulky.cache import SubtitleCache
from titulky.config import Settings
from titulky.download import DownloadPipeline
from titulky.models.search import WorkMetadata
from titulky.search import SearchEngine
from titulky.session import SessionPool
from titulky.state import AppState
from titulky.store import SqliteObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

BASE_URL = "https://titulky.test"


class FakeTitleResolver:
    """Resolves a fixed set of work ids."""

    def __init__(self, works: dict[str, WorkMetadata]) -> None:
        self.works = works
        self.calls: list[tuple[str, str]] = []

    async def resolve(self, kind: Literal["movie", "series"], work_id: str) -> WorkMetadata | None:
        self.calls.append((kind, work_id))
        return self.works.get(work_id)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        site={"base_url": BASE_URL, "username": "alice", "password": "secret"},
        download={"max_wait_seconds": 1},
    )


@pytest.fixture()
def title_resolver() -> FakeTitleResolver:
    return FakeTitleResolver(
        {
            "tt0371746": WorkMetadata(name="Iron Man", aliases=["Železný muž"], year="2008"),
            "tt1305826": WorkMetadata(name="Adventure Time", aliases=["Čas na dobrodružství"]),
        }
    )


@pytest.fixture()
async def app_state(
    settings: Settings, title_resolver: FakeTitleResolver
) -> AsyncIterator[AppState]:
    """Full AppState wired for integration tests."""
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteObjectStore(db)
        await store.init_db()

        async with httpx.AsyncClient() as client:
            sessions = SessionPool(settings.site, client)
            session = sessions.default
            pipeline = DownloadPipeline(session, settings.download, sleep=AsyncMock())
            state = AppState(
                settings=settings,
                session=session,
                search_engine=SearchEngine(session),
                store=store,
                cache=SubtitleCache(store, pipeline),
                http_client=client,
                title_resolver=title_resolver,
                sessions=sessions,
            )
            try:
                yield state
            finally:
                await sessions.aclose()

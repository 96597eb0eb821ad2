"""Protocol interfaces for swappable components.

Handlers, the cache layer and AppState reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other durable backends (e.g. an S3-compatible bucket) to be swapped in
  without touching the cache layer
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

if TYPE_CHECKING:
    from titulky.models.cache import StoredObject
    from titulky.models.search import WorkMetadata
    from titulky.models.subtitle import ExtractedSubtitleFile


class ObjectStoreProtocol(Protocol):
    """Interface for the durable subtitle store."""

    async def list_keys(self, prefix: str = "") -> list[str]: ...

    async def get(self, key: str) -> StoredObject | None: ...

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None: ...


class DownloaderProtocol(Protocol):
    """Interface for fetching and unpacking one subtitle from the origin."""

    async def fetch(
        self, subtitle_id: str, link_file: str
    ) -> list[ExtractedSubtitleFile] | None: ...


class TitleResolverProtocol(Protocol):
    """Interface for the external movie/series metadata lookup."""

    async def resolve(
        self, kind: Literal["movie", "series"], work_id: str
    ) -> WorkMetadata | None: ...

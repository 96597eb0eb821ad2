"""SQLite-backed durable object store for subtitles.

A flat key/value table shaped like a bucket: ``subs/<id>.srt`` keys for
downloaded subtitles, ``custom/<work>/<filename>`` keys for user-supplied
ones, raw bytes, and a small string-to-string metadata map. Entries never
expire.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures and corrupt rows return ``None`` (treated as a
miss by callers), list failures return an empty list, and write failures
are logged and ignored. The freshly downloaded subtitle is still served
from memory.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import aiosqlite
import structlog

from titulky.models.cache import StoredObject

log = structlog.get_logger()

_CREATE_OBJECTS_TABLE = """
CREATE TABLE IF NOT EXISTS objects (
    key        TEXT PRIMARY KEY,
    data       BLOB NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}',
    stored_at  TEXT NOT NULL
)
"""


class SqliteObjectStore:
    """Object store implementing ObjectStoreProtocol on a single SQLite file."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_OBJECTS_TABLE)
        await self._db.commit()

    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return every key starting with ``prefix``. Empty list on failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key FROM objects WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        except aiosqlite.Error:
            log.warning("store_list_error", prefix=prefix, exc_info=True)
            return []

    async def get(self, key: str) -> StoredObject | None:
        """Read one object. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key, data, metadata, stored_at FROM objects WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            return StoredObject(
                key=row[0],
                data=bytes(row[1]),
                metadata=json.loads(row[2]),
                stored_at=datetime.fromisoformat(row[3]),
            )
        except aiosqlite.Error:
            log.warning("store_read_error", key=key, exc_info=True)
            return None
        except ValueError:
            # Undecodable metadata or timestamp; the row is treated as a miss
            log.warning("store_row_corrupt", key=key, exc_info=True)
            return None

    async def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        """Write one object, replacing any previous value. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO objects (key, data, metadata, stored_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    key,
                    data,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    datetime.now(UTC).isoformat(),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=key, exc_info=True)

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Canonical UTF-8 subtitle held by either cache tier."""

    subtitle_id: str
    content: str
    filename: str  # Original filename inside the downloaded archive
    stored_at: datetime


class StoredObject(BaseModel):
    """Raw record returned by the durable object store."""

    key: str
    data: bytes
    metadata: dict[str, str] = {}
    stored_at: datetime

from __future__ import annotations

from titulky.models.cache import CacheEntry, StoredObject
from titulky.models.handlers import (
    ConvertSubtitleInput,
    SearchSubtitlesInput,
    SearchSubtitlesOutput,
    ServeCustomSubtitleInput,
    ServeSubtitleInput,
)
from titulky.models.search import CustomSubtitle, RankedSubtitle, SearchResult, WorkMetadata
from titulky.models.subtitle import ExtractedSubtitleFile, ServedSubtitle

__all__ = [
    # search
    "SearchResult",
    "RankedSubtitle",
    "WorkMetadata",
    "CustomSubtitle",
    # subtitle files
    "ExtractedSubtitleFile",
    "ServedSubtitle",
    # cache
    "CacheEntry",
    "StoredObject",
    # handlers
    "SearchSubtitlesInput",
    "SearchSubtitlesOutput",
    "ServeSubtitleInput",
    "ServeCustomSubtitleInput",
    "ConvertSubtitleInput",
]

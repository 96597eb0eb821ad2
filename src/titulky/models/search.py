from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

Language = Literal["cze", "slk"]


class SearchResult(BaseModel):
    """Single subtitle row scraped from a titulky.com listing page."""

    model_config = ConfigDict(frozen=True)

    id: str  # Site-assigned numeric id, kept as text
    link_file: str  # Slug used to build "<base>/<link_file>.htm"
    title: str
    version: str | None = None  # Release label, e.g. "Iron.Man.2008.1080p.BluRay.x264"
    lang: Language = "cze"
    download_count: int = 0
    size: float | None = None
    author: str | None = None

    @property
    def label(self) -> str:
        """Text matched against release tags: the version when present."""
        return self.version or self.title


class RankedSubtitle(BaseModel):
    """A search result after title filtering and scoring."""

    result: SearchResult
    score: int
    cached: bool = False  # Present in the durable store
    label: str  # Display label ("⭐ " prefix for a contextual match)
    quality: str = ""  # Coarse quality marker derived from the label


class WorkMetadata(BaseModel):
    """What the title-resolution collaborator knows about a movie or series."""

    name: str
    aliases: list[str] = []
    poster: str | None = None
    year: str | None = None


class CustomSubtitle(BaseModel):
    """A user-supplied subtitle kept in the durable store for one work."""

    model_config = ConfigDict(frozen=True)

    work_key: str  # IMDb id, or "<id>-<season>-<episode>" for an episode
    filename: str
    label: str  # Display label, "📌 " prefixed
    lang: str = "cze"
    uploader: str = "unknown"
    format: str  # Extension of the stored file
    path: str  # Route serving it, relative to the service root

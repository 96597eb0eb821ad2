from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

from titulky.models.search import CustomSubtitle, RankedSubtitle

_SUB_ID_RE = re.compile(r"^\d{1,12}$")
_LINK_FILE_RE = re.compile(r"^[\w][\w.+-]*$")
_WORK_KEY_RE = re.compile(r"^[\w][\w.-]{0,63}$")
_CUSTOM_FILENAME_RE = re.compile(r"^[^\\/.][^\\/]{0,250}\.(srt|ssa|ass|sub|vtt)$", re.IGNORECASE)


class SearchSubtitlesInput(BaseModel):
    # Either explicit titles, or a work to look up through the title resolver
    titles: list[str] = []
    kind: Literal["movie", "series"] = "movie"
    work_id: str = ""
    season: int | None = None
    episode: int | None = None
    target_name: str = ""
    playing_filename: str = ""
    prefer_cached: bool = False
    limit: int = 10

    @field_validator("titles")
    @classmethod
    def validate_titles(cls, v: list[str]) -> list[str]:
        cleaned = [title.strip() for title in v if title and title.strip()]
        if any(len(title) > 500 for title in cleaned):
            raise ValueError("search titles must not exceed 500 characters")
        return cleaned

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("limit must be >= 1")
        return v

    @model_validator(mode="after")
    def require_titles_or_work(self) -> SearchSubtitlesInput:
        if not self.titles and not self.work_id.strip():
            raise ValueError("at least one search title or a work id is required")
        return self


class SearchSubtitlesOutput(BaseModel):
    # Shown ahead of the ranked titulky.com results
    custom_subtitles: list[CustomSubtitle] = []
    subtitles: list[RankedSubtitle]
    search_titles: list[str]  # Candidates in the order they were tried
    playing_tags: list[str]


class ServeSubtitleInput(BaseModel):
    sub_id: str
    link_file: str
    vtt: bool = False

    @field_validator("sub_id")
    @classmethod
    def validate_sub_id(cls, v: str) -> str:
        if not _SUB_ID_RE.match(v):
            raise ValueError(f"Invalid subtitle id: {v!r}")
        return v

    @field_validator("link_file")
    @classmethod
    def validate_link_file(cls, v: str) -> str:
        if len(v) > 300 or not _LINK_FILE_RE.match(v):
            raise ValueError(f"Invalid link token: {v!r}")
        return v


class ServeCustomSubtitleInput(BaseModel):
    work_key: str
    filename: str
    raw: bool = False

    @field_validator("work_key")
    @classmethod
    def validate_work_key(cls, v: str) -> str:
        if not _WORK_KEY_RE.match(v):
            raise ValueError(f"Invalid work key: {v!r}")
        return v

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str) -> str:
        if not _CUSTOM_FILENAME_RE.match(v):
            raise ValueError(f"Invalid subtitle filename: {v!r}")
        return v


class ConvertSubtitleInput(BaseModel):
    source_format: str

    @field_validator("source_format")
    @classmethod
    def normalise_format(cls, v: str) -> str:
        return v.strip().lower().lstrip(".")

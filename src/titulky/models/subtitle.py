from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class ExtractedSubtitleFile:
    """One subtitle file unpacked from a downloaded archive."""

    filename: str
    content: bytes


@dataclass(frozen=True)
class ServedSubtitle:
    """Result of serving a subtitle id. Always playable, never an error."""

    content: str
    filename: str
    source: Literal["memory", "store", "origin", "limit"]

    @property
    def limited(self) -> bool:
        return self.source == "limit"

"""User-supplied subtitles kept in the durable store.

Files live under ``custom/<work>/<filename>``. ``<work>`` is the IMDb id of
a movie, or ``<id>-<season>-<episode>`` for one episode of a series. The
optional metadata keys ``label``, ``lang`` and ``uploader`` describe a file;
without them the label is the filename stem. Search lists these ahead of
titulky.com results.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Literal
from urllib.parse import quote

import structlog

from titulky.convert import detect_format, ensure_utf8
from titulky.models.search import CustomSubtitle

if TYPE_CHECKING:
    from titulky.protocols import ObjectStoreProtocol

log = structlog.get_logger()

CUSTOM_PREFIX = "custom/"
CUSTOM_MARKER = "📌"

_CUSTOM_FILE_RE = re.compile(r"\.(srt|ssa|ass|sub|vtt)$", re.IGNORECASE)


def custom_work_key(
    kind: Literal["movie", "series"],
    work_id: str,
    season: int | None = None,
    episode: int | None = None,
) -> str:
    if kind == "series" and season is not None and episode is not None:
        return f"{work_id}-{season}-{episode}"
    return work_id


def custom_key(work_key: str, filename: str) -> str:
    return f"{CUSTOM_PREFIX}{work_key}/{filename}"


def is_custom_filename(filename: str) -> bool:
    return bool(_CUSTOM_FILE_RE.search(filename))


async def list_custom_subtitles(
    store: ObjectStoreProtocol, work_key: str
) -> list[CustomSubtitle]:
    """Every user-supplied subtitle stored for ``work_key``, in key order."""
    prefix = custom_key(work_key, "")
    found: list[CustomSubtitle] = []
    for key in await store.list_keys(prefix):
        filename = key[len(prefix) :]
        if "/" in filename or not is_custom_filename(filename):
            continue
        stored = await store.get(key)
        if stored is None:
            continue
        meta = stored.metadata
        label = meta.get("label") or PurePosixPath(filename).stem
        found.append(
            CustomSubtitle(
                work_key=work_key,
                filename=filename,
                label=f"{CUSTOM_MARKER} {label}",
                lang=meta.get("lang") or "cze",
                uploader=meta.get("uploader") or "unknown",
                format=detect_format(filename),
                path=f"/custom-sub/{quote(work_key)}/{quote(filename)}",
            )
        )
    if found:
        log.debug("custom_subtitles_listed", work_key=work_key, count=len(found))
    return found


async def load_custom_subtitle(
    store: ObjectStoreProtocol, work_key: str, filename: str
) -> str | None:
    """Text of one user-supplied subtitle, normalised to UTF-8. None on a miss."""
    stored = await store.get(custom_key(work_key, filename))
    if stored is None:
        return None
    return ensure_utf8(stored.data)

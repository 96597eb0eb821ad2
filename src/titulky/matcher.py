"""Title filtering and release-quality ranking.

Pure business logic: receives SearchResults and free-text labels, returns
scores and ranked lists. No knowledge of AppState, HTTP, or I/O.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from titulky.models.search import RankedSubtitle

if TYPE_CHECKING:
    from collections.abc import Iterable

    from titulky.models.search import SearchResult, WorkMetadata

RELEASE_TAGS: tuple[str, ...] = (
    # source
    "bluray", "bdrip", "brrip", "bd-rip", "blu-ray", "bdremux", "remux",
    "web-dl", "webdl", "webrip", "web-rip", "web",
    "hdtv", "hdrip", "dvdrip", "dvd", "dvdscr",
    "hdcam", "cam", "ts", "telesync", "tc", "dcp",
    # resolution
    "2160p", "1080p", "720p", "480p",
    # codec
    "x264", "x265", "h264", "h265", "hevc", "avc",
    # dynamic range
    "hdr", "hdr10", "dolby-vision", "sdr",
    # audio
    "atmos", "dts", "dts-hd", "truehd", "aac", "ac3", "dd5", "flac",
    # edition
    "imax", "repack", "proper", "dual",
)  # fmt: skip

RESOLUTION_TAGS = ("2160p", "1080p", "720p", "480p")
SOURCE_TAGS = ("bluray", "bdremux", "remux", "web-dl", "webdl", "webrip", "hdtv", "dvdrip", "dcp")
CODEC_TAGS = ("x264", "x265", "h264", "h265", "hevc", "avc")

RESOLUTION_POINTS = 20
SOURCE_POINTS = 15
CODEC_POINTS = 5

# Best single match wins; ordered best-to-worst for readability.
QUALITY_LADDER: tuple[tuple[str, int], ...] = (
    ("2160p", 100),
    ("remux", 95),
    ("bdremux", 95),
    ("bluray", 90),
    ("blu-ray", 90),
    ("1080p", 80),
    ("web-dl", 70),
    ("webdl", 70),
    ("webrip", 65),
    ("720p", 60),
    ("hdtv", 50),
    ("hdrip", 45),
    ("brrip", 40),
    ("bdrip", 40),
    ("dvdrip", 30),
    ("dvd", 25),
    ("480p", 20),
    ("hdcam", 10),
    ("cam", 5),
    ("ts", 5),
    ("telesync", 5),
)

# What may follow the target title for a listing to still count as the same
# work: season/episode markers, resolutions, source and codec prefixes.
_TITLE_CONTEXT_RE = re.compile(r"^(s\d|season|720|1080|2160|bluray|brrip|web|dvd|hdtv|x26)")
_YEAR_RE = re.compile(r"^\d{4}")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_SEPARATOR_RE = re.compile(r"[._-]")
_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")


def _normalise_label(text: str) -> str:
    """Lowercase and turn ``.``, ``_`` and ``-`` into spaces for tag matching."""
    return _SEPARATOR_RE.sub(" ", text.lower())


def _normalise_title(text: str) -> str:
    return _NON_ALNUM_RE.sub("", text.lower()).strip()


def is_exact_title_match(target: str, candidate: str) -> bool:
    """True if ``candidate`` names the same work as ``target``.

    Equal after normalisation, or ``candidate`` starts with ``target`` and
    the remainder is empty, a 4-digit year, or a release-context token.
    ``"iron man 2"`` therefore does not match ``"iron man"``.
    """
    if not target or not candidate:
        return False

    movie = _normalise_title(target)
    sub = _normalise_title(candidate)
    if not movie:
        return False

    if sub == movie:
        return True

    if sub.startswith(movie):
        after = sub[len(movie) :].strip()
        if not after or _YEAR_RE.match(after) or _TITLE_CONTEXT_RE.match(after):
            return True

    return False


def matches_target(result: SearchResult, target_name: str) -> bool:
    """Apply the title filter to both the display title and the link slug."""
    target = _TRAILING_PUNCT_RE.sub("", target_name.lower()).strip()
    title = _normalise_label(result.title).strip()
    slug = _normalise_label(result.link_file)
    return is_exact_title_match(target, title) or is_exact_title_match(target, slug)


def extract_release_tags(label: str | None) -> frozenset[str]:
    """Return the canonical release tags found in a filename or version label."""
    if not label:
        return frozenset()
    text = _normalise_label(label)
    return frozenset(tag for tag in RELEASE_TAGS if tag.replace("-", " ") in text)


def has_usable_release_info(filename: str | None) -> bool:
    """A playing filename is worth matching against only if it carries tags."""
    if not filename or len(filename.strip()) <= 3:
        return False
    return bool(extract_release_tags(filename))


def score_against_playing(label: str | None, playing_tags: frozenset[str]) -> int:
    """Score a subtitle label by tag overlap with the file being played."""
    if not label or not playing_tags:
        return 0
    sub_tags = extract_release_tags(label)
    shared = sub_tags & playing_tags

    score = 0
    score += RESOLUTION_POINTS * sum(1 for tag in RESOLUTION_TAGS if tag in shared)
    score += SOURCE_POINTS * sum(1 for tag in SOURCE_TAGS if tag in shared)
    score += CODEC_POINTS * sum(1 for tag in CODEC_TAGS if tag in shared)
    return score


def quality_score(label: str | None) -> int:
    """Absolute quality of a label: the best single rung of QUALITY_LADDER."""
    if not label:
        return 0
    text = _normalise_label(label)
    best = 0
    for tag, points in QUALITY_LADDER:
        if tag.replace("-", " ") in text and points > best:
            best = points
    return best


def quality_marker(label: str | None) -> str:
    """Coarse quality marker shown next to a subtitle in player menus."""
    text = (label or "").lower()
    if "remux" in text:
        return "💎"
    if any(token in text for token in ("bluray", "blu-ray", "bdrip", "brrip", "2160p", "4k")):
        return "🟢"
    if "web" in text:
        return "🟡"
    if "hdtv" in text:
        return "🟠"
    if "dvd" in text:
        return "🔴"
    if "cam" in text or "telesync" in text:
        return "⚫"
    return ""


def rank_results(
    results: Iterable[SearchResult],
    *,
    target_name: str = "",
    playing_filename: str = "",
    cached_ids: frozenset[str] | set[str] = frozenset(),
    prefer_cached: bool = False,
    limit: int = 10,
) -> list[RankedSubtitle]:
    """Filter, score and order search results.

    With a usable playing filename results are scored by tag overlap,
    otherwise by absolute quality. Sorting is stable. ``prefer_cached``
    additionally lifts subtitles already in the durable store so they can be
    served without touching the origin's daily download limit.
    """
    candidates = list(results)
    if target_name:
        candidates = [result for result in candidates if matches_target(result, target_name)]

    playing_tags = extract_release_tags(playing_filename)
    contextual = bool(playing_tags)

    scored: list[tuple[SearchResult, int]] = []
    for result in candidates:
        if contextual:
            score = score_against_playing(result.label, playing_tags)
        else:
            score = quality_score(result.label)
        scored.append((result, score))
    scored.sort(key=lambda item: item[1], reverse=True)

    if prefer_cached:

        def _priority(item: tuple[SearchResult, int]) -> int:
            result, score = item
            cached = 2 if result.id in cached_ids else 0
            matched = 1 if contextual and score > 0 else 0
            return cached + matched

        scored.sort(key=lambda item: (_priority(item), item[1]), reverse=True)

    ranked: list[RankedSubtitle] = []
    for result, score in scored[:limit]:
        label = result.label
        if contextual and score > 0:
            label = f"⭐ {label}"
        ranked.append(
            RankedSubtitle(
                result=result,
                score=score,
                cached=result.id in cached_ids,
                label=label,
                quality=quality_marker(result.label),
            )
        )
    return ranked


def build_search_titles(
    meta: WorkMetadata,
    *,
    season: int | None = None,
    episode: int | None = None,
) -> list[str]:
    """Build ordered search candidates for a movie or a series episode.

    Series episodes try ``"<name> SxxEyy"`` (and aliases) before the bare
    name; movies try the name, aliases, then the name without trailing
    punctuation. Duplicates and one-character candidates are dropped.
    """
    name = meta.name.strip()
    aliases = [alias.strip() for alias in meta.aliases if alias and alias.strip() != name]
    titles: list[str] = []

    if season is not None or episode is not None:
        code = f"S{season or 1:02d}E{episode or 1:02d}"
        if name:
            titles.append(f"{name} {code}")
        titles.extend(f"{alias} {code}" for alias in aliases)
        if name:
            titles.append(name)
    else:
        if name:
            titles.append(name)
        titles.extend(aliases)
        cleaned = _TRAILING_PUNCT_RE.sub("", name).strip()
        if cleaned and cleaned != name:
            titles.append(cleaned)

    unique: list[str] = []
    for title in titles:
        if len(title) > 1 and title not in unique:
            unique.append(title)
    return unique

"""Markup parsers for titulky.com listing and download pages.

Pattern-based on purpose: the site's HTML is not well-formed enough for a
strict parser, and only a handful of fragments matter. Each parsing strategy
is a separate function so either can be replaced without touching search,
scoring or caching code.

Listing pages are parsed by two independent strategies, tried in order:
  1. Row-based:  ``<tr class="r...">`` rows with positional ``<td>`` cells
  2. Link-based: any anchor pointing at a ``<slug>-<id>.htm`` page
The first strategy that yields results wins; results are never merged.
"""

from __future__ import annotations

import html
import re

from titulky.models.search import Language, SearchResult

NO_RESULTS_MARKER = "Nenalezena ani jedna"

# Slugs of site pages that share the "<slug>-<id>.htm" shape but are not subtitles
NON_SUBTITLE_SLUGS = (
    "precti-si",
    "pozadavek",
    "internetova",
    "podivej",
    "napoveda",
    "forum",
    "prispevek",
    "reklama",
)

_ROW_RE = re.compile(r'<tr\s+class="r[^"]*"[^>]*>(.*?)</tr>', re.IGNORECASE | re.DOTALL)
_ROW_LINK_RE = re.compile(r'href="/?([\w][\w.+-]*-(\d{3,}))\.htm"', re.IGNORECASE)
_ROW_TITLE_RE = re.compile(r"<a[^>]+>(?:<div[^>]+>)?([^<]+)", re.IGNORECASE)
_ROW_VERSION_RE = re.compile(r'title="([^"]{3,})"', re.IGNORECASE)
_ROW_LANG_RE = re.compile(r'<img[^>]+alt="(\w{2})"', re.IGNORECASE)
_CELL_RE = re.compile(r"<td[^>]*>(.*?)</td>", re.IGNORECASE | re.DOTALL)
_CELL_ANCHOR_RE = re.compile(r"<a[^>]+>([^<]+)", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_NUMBER_RE = re.compile(r"([\d.]+)")

_ANCHOR_RE = re.compile(
    r'<a\s+[^>]*href="/?([\w][\w.+-]*-(\d{3,}))\.htm"[^>]*>(.*?)</a>',
    re.IGNORECASE | re.DOTALL,
)
_NON_SUBTITLE_RE = re.compile("|".join(NON_SUBTITLE_SLUGS), re.IGNORECASE)

# Positional cells of a listing row
_CELL_DOWNLOADS = 4
_CELL_SIZE = 7
_CELL_AUTHOR = 8

_LANGUAGE_CODES: dict[str, Language] = {"SK": "slk", "CZ": "cze"}

# Download page
_CAPTCHA_RE = re.compile(r"captcha/captcha\.php", re.IGNORECASE)
_COUNTDOWN_RE = re.compile(r"CountDown\((\d+)\)", re.IGNORECASE)
_DOWNLINK_ID_FIRST_RE = re.compile(
    r"""<a[^>]+id=["']?downlink["']?[^>]+href=["']([^"']+)["']""", re.IGNORECASE
)
_DOWNLINK_HREF_FIRST_RE = re.compile(
    r"""href=["']([^"']+)["'][^>]*id=["']?downlink["']?""", re.IGNORECASE
)


def parse_search_results(content: str) -> list[SearchResult]:
    """Parse a listing page into search results.

    Returns an empty list immediately when the page carries the site's
    "nothing found" marker.
    """
    if NO_RESULTS_MARKER in content:
        return []

    results = parse_rows(content)
    if not results:
        results = parse_links(content)
    return results


def parse_rows(content: str) -> list[SearchResult]:
    """Row-based strategy. Rows without an id/link are skipped, not fatal."""
    results: list[SearchResult] = []
    for match in _ROW_RE.finditer(content):
        result = _parse_row(match.group(1))
        if result is not None:
            results.append(result)
    return results


def _parse_row(row: str) -> SearchResult | None:
    link_match = _ROW_LINK_RE.search(row)
    if not link_match:
        return None
    link_file, sub_id = link_match.group(1), link_match.group(2)

    title_match = _ROW_TITLE_RE.search(row)
    title = html.unescape(title_match.group(1).strip()) if title_match else link_file

    version_match = _ROW_VERSION_RE.search(row)
    version = html.unescape(version_match.group(1)) if version_match else None

    lang: Language = "cze"
    lang_match = _ROW_LANG_RE.search(row)
    if lang_match:
        lang = _LANGUAGE_CODES.get(lang_match.group(1).upper(), "cze")

    cells = _CELL_RE.findall(row)

    download_count = 0
    if len(cells) > _CELL_DOWNLOADS:
        raw_count = _TAG_RE.sub("", cells[_CELL_DOWNLOADS]).strip()
        if raw_count.isdigit() and int(raw_count) > 0:
            download_count = int(raw_count)

    size: float | None = None
    if len(cells) > _CELL_SIZE:
        size_match = _NUMBER_RE.search(cells[_CELL_SIZE])
        if size_match:
            try:
                size = float(size_match.group(1))
            except ValueError:
                size = None

    author: str | None = None
    if len(cells) > _CELL_AUTHOR:
        author_match = _CELL_ANCHOR_RE.search(cells[_CELL_AUTHOR])
        if author_match:
            author = author_match.group(1).strip()

    return SearchResult(
        id=sub_id,
        link_file=link_file,
        title=title or link_file,
        version=version,
        lang=lang,
        download_count=download_count,
        size=size,
        author=author,
    )


def parse_links(content: str) -> list[SearchResult]:
    """Link-based fallback: every subtitle-looking anchor, deduplicated by id."""
    results: list[SearchResult] = []
    seen: set[str] = set()

    for match in _ANCHOR_RE.finditer(content):
        link_file, sub_id, raw_title = match.group(1), match.group(2), match.group(3)
        if sub_id in seen:
            continue
        if _NON_SUBTITLE_RE.search(link_file):
            continue

        seen.add(sub_id)
        title = html.unescape(_TAG_RE.sub("", raw_title).strip())
        if not title:
            title = re.sub(r"-\d+$", "", link_file).replace("-", " ")
        results.append(SearchResult(id=sub_id, link_file=link_file, title=title))

    return results


# ---------------------------------------------------------------------------
# Download page
# ---------------------------------------------------------------------------


def requires_captcha(content: str) -> bool:
    return bool(_CAPTCHA_RE.search(content))


def parse_countdown(content: str) -> int:
    """Seconds the origin asks us to wait before fetching the file (0 if none)."""
    match = _COUNTDOWN_RE.search(content)
    return int(match.group(1)) if match else 0


def parse_download_link(content: str) -> str | None:
    """Return the href of the ``downlink`` anchor, in either attribute order."""
    match = _DOWNLINK_ID_FIRST_RE.search(content) or _DOWNLINK_HREF_FIRST_RE.search(content)
    return match.group(1) if match else None

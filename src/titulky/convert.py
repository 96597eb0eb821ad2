"""Subtitle text normalisation and conversion to WebVTT.

Three independent steps:
  1. ``ensure_utf8``: decode raw bytes (BOM sniffing, CP1250 fallback)
  2. ``srt_to_vtt``: textual SRT → WebVTT rewrite
  3. ``ass_to_vtt``: single-pass ASS/SSA parse with style translation
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

import structlog

from titulky.errors import ErrorCode, TitulkyError

log = structlog.get_logger()

VTT_HEADER = "WEBVTT\n\n"

# Central-European single-byte code page used by most Czech/Slovak subtitles
FALLBACK_ENCODING = "cp1250"

# Mis-decoded accented letters ("Ã¨", "Ã©", ...) above this share of the
# text mean the bytes were not UTF-8 in the first place.
SUSPICIOUS_RATIO = 0.02
SUSPICIOUS_MIN_LENGTH = 50

_SUSPICIOUS_RE = re.compile(r"[\xC0-\xC3][\x80-\xBF]")
_SRT_TIME_RE = re.compile(r"(\d{2}:\d{2}:\d{2}),(\d{3})")

SUPPORTED_FORMATS = frozenset({"srt", "ass", "ssa", "vtt"})


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def ensure_utf8(data: bytes) -> str:
    """Decode subtitle bytes to text.

    A UTF-8 or UTF-16LE byte-order mark decides the encoding outright.
    Otherwise the bytes are decoded as UTF-8 and, if the result looks like
    mis-decoded CP1250, decoded again as CP1250. This is a heuristic: it
    always returns text, never raises.
    """
    if data.startswith(codecs.BOM_UTF8):
        return data.decode("utf-8-sig", errors="replace")

    if data.startswith(codecs.BOM_UTF16_LE):
        return data[len(codecs.BOM_UTF16_LE) :].decode("utf-16-le", errors="replace")

    text = data.decode("utf-8", errors="replace")
    if looks_like_utf8(text):
        return text

    log.debug("encoding_fallback", encoding=FALLBACK_ENCODING, length=len(data))
    return data.decode(FALLBACK_ENCODING, errors="replace")


def looks_like_utf8(text: str) -> bool:
    """Validity check for text that was decoded as UTF-8 with replacement."""
    if "\ufffd" in text:
        return False

    total = len(text)
    if total > SUSPICIOUS_MIN_LENGTH:
        suspicious = len(_SUSPICIOUS_RE.findall(text))
        if suspicious / total > SUSPICIOUS_RATIO:
            return False

    return True


# ---------------------------------------------------------------------------
# SRT
# ---------------------------------------------------------------------------


def srt_to_vtt(text: str) -> str:
    """Rewrite SRT as WebVTT. Cue numbering and text are left untouched."""
    body = text.replace("\r\n", "\n")
    body = _SRT_TIME_RE.sub(r"\1.\2", body)
    return VTT_HEADER + body.strip() + "\n"


# ---------------------------------------------------------------------------
# ASS / SSA
# ---------------------------------------------------------------------------

_STYLES_HEADER_RE = re.compile(r"^\[V4\+?\s*Styles?\]", re.IGNORECASE)
_EVENTS_HEADER_RE = re.compile(r"^\[Events\]", re.IGNORECASE)
_FORMAT_RE = re.compile(r"^Format:\s*", re.IGNORECASE)
_STYLE_RE = re.compile(r"^Style:\s*", re.IGNORECASE)
_DIALOGUE_RE = re.compile(r"^Dialogue:\s*", re.IGNORECASE)
_ASS_TIME_RE = re.compile(r"(\d+):(\d+):(\d+)\.(\d+)")
_INLINE_COLOR_RE = re.compile(r"\{\\1?c&H([0-9A-Fa-f]{6})&?\}")
_OVERRIDE_RE = re.compile(r"\{[^}]*\}")

_INLINE_TAGS = (
    ("{\\b1}", "<b>"),
    ("{\\b0}", "</b>"),
    ("{\\i1}", "<i>"),
    ("{\\i0}", "</i>"),
    ("{\\u1}", "<u>"),
    ("{\\u0}", "</u>"),
)

# Used when the [Events] section has no Format: line
DEFAULT_EVENT_FORMAT = [
    "layer", "start", "end", "style", "name",
    "marginl", "marginr", "marginv", "effect", "text",
]  # fmt: skip


@dataclass(frozen=True)
class AssStyle:
    color: str | None = None
    bold: bool = False
    italic: bool = False


def _fields(line: str, prefix: re.Pattern[str]) -> list[str]:
    return [field.strip().lower() for field in prefix.sub("", line).split(",")]


def _flag(parts: list[str], index: int) -> bool:
    if index < 0 or index >= len(parts):
        return False
    return parts[index].strip() in ("-1", "1")


def ass_time_to_vtt(value: str) -> str:
    """``H:MM:SS.CC`` → ``HH:MM:SS.mmm``."""
    match = _ASS_TIME_RE.search(value)
    if not match:
        return "00:00:00.000"
    hours, minutes, seconds, fraction = match.groups()
    millis = fraction.ljust(3, "0")[:3]
    return f"{hours.zfill(2)}:{minutes.zfill(2)}:{seconds.zfill(2)}.{millis}"


def ass_color_to_vtt(value: str | None) -> str | None:
    """``&HAABBGGRR`` or ``&HBBGGRR`` → ``#RRGGBB`` (alpha is dropped)."""
    if not value:
        return None
    hex_digits = re.sub(r"^&H", "", value.strip(), flags=re.IGNORECASE).rstrip("&")
    if len(hex_digits) < 6:
        return None
    blue, green, red = hex_digits[-6:-4], hex_digits[-4:-2], hex_digits[-2:]
    return f"#{red}{green}{blue}"


def ass_text_to_vtt(text: str, style: AssStyle | None = None) -> str:
    """Translate one dialogue's override tags into WebVTT cue markup."""
    result = text
    for tag, markup in _INLINE_TAGS:
        result = result.replace(tag, markup)

    open_spans = 0

    def _color_span(match: re.Match[str]) -> str:
        nonlocal open_spans
        color = ass_color_to_vtt("&H" + match.group(1))
        if color is None:
            return ""
        open_spans += 1
        return f"<c.color{color}>"

    result = _INLINE_COLOR_RE.sub(_color_span, result)
    result = _OVERRIDE_RE.sub("", result)
    result = result.replace("\\N", "\n").replace("\\n", "\n").replace("\\h", " ")
    result += "</c>" * open_spans

    if style is not None:
        if style.bold and "<b>" not in result:
            result = f"<b>{result}</b>"
        if style.italic and "<i>" not in result:
            result = f"<i>{result}</i>"
        if style.color and not open_spans:
            result = f"<c.color{style.color}>{result}</c>"

    return result.strip()


def ass_to_vtt(text: str) -> str:
    """Convert ASS/SSA script text to WebVTT.

    Section state moves ``outside → styles → events → outside`` on bracketed
    headers. One cue is emitted per Dialogue line, in source order; no cue
    merging or overlap resolution is done.
    """
    styles: dict[str, AssStyle] = {}
    style_format: list[str] = []
    event_format: list[str] = DEFAULT_EVENT_FORMAT
    cues: list[str] = []
    section: str | None = None

    for line in text.splitlines():
        stripped = line.strip()

        if stripped.startswith("["):
            if _STYLES_HEADER_RE.match(stripped):
                section = "styles"
            elif _EVENTS_HEADER_RE.match(stripped):
                section = "events"
            else:
                section = None
            continue

        if section == "styles":
            if _FORMAT_RE.match(stripped):
                style_format = _fields(stripped, _FORMAT_RE)
            elif _STYLE_RE.match(stripped):
                _capture_style(stripped, style_format, styles)

        elif section == "events":
            if _FORMAT_RE.match(stripped):
                event_format = _fields(stripped, _FORMAT_RE)
            elif _DIALOGUE_RE.match(stripped):
                cue = _dialogue_to_cue(stripped, event_format, styles)
                if cue is not None:
                    cues.append(cue)

    return VTT_HEADER + "\n".join(cues)


def _capture_style(line: str, style_format: list[str], styles: dict[str, AssStyle]) -> None:
    if "name" not in style_format:
        return
    parts = _STYLE_RE.sub("", line).split(",")
    name_idx = style_format.index("name")
    if name_idx >= len(parts) or not parts[name_idx].strip():
        return

    color_idx = style_format.index("primarycolour") if "primarycolour" in style_format else -1
    color = ass_color_to_vtt(parts[color_idx]) if 0 <= color_idx < len(parts) else None
    styles[parts[name_idx].strip()] = AssStyle(
        color=color,
        bold=_flag(parts, style_format.index("bold") if "bold" in style_format else -1),
        italic=_flag(parts, style_format.index("italic") if "italic" in style_format else -1),
    )


def _dialogue_to_cue(
    line: str, event_format: list[str], styles: dict[str, AssStyle]
) -> str | None:
    parts = _DIALOGUE_RE.sub("", line).split(",")
    if len(parts) < len(event_format):
        return None
    if not {"start", "end", "text"} <= set(event_format):
        return None

    text_idx = event_format.index("text")
    # The text column is last and may itself contain commas
    raw_text = ",".join(parts[text_idx:]).strip()
    style = None
    if "style" in event_format:
        style = styles.get(parts[event_format.index("style")].strip())

    start = ass_time_to_vtt(parts[event_format.index("start")].strip())
    end = ass_time_to_vtt(parts[event_format.index("end")].strip())
    return f"{start} --> {end}\n{ass_text_to_vtt(raw_text, style)}\n"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def detect_format(filename: str) -> str:
    """Subtitle format from a filename extension; SRT when unknown."""
    suffix = PurePosixPath(filename).suffix.lower().lstrip(".")
    return suffix or "srt"


def convert_to_vtt(content: str | bytes, source_format: str) -> str:
    """Convert SRT, ASS/SSA or WebVTT content to WebVTT text."""
    fmt = source_format.lower().lstrip(".")
    if fmt not in SUPPORTED_FORMATS:
        raise TitulkyError(
            code=ErrorCode.UNSUPPORTED_FORMAT,
            message=f"Cannot convert '{source_format}' subtitles to WebVTT",
        )

    text = ensure_utf8(content) if isinstance(content, bytes) else content
    if fmt in ("ass", "ssa"):
        return ass_to_vtt(text)
    if fmt == "vtt":
        return text
    return srt_to_vtt(text)

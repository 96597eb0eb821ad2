"""Handler for serve_subtitle.

Receives AppState, serves the subtitle through the two-tier cache and, when
asked, renders it as WebVTT. Always returns a playable body: origin failures
arrive from the cache as the limit message, never as an error.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from titulky.cache import limit_message
from titulky.convert import ass_to_vtt, detect_format, srt_to_vtt
from titulky.download import DownloadPipeline
from titulky.errors import ErrorCode, TitulkyError
from titulky.models.handlers import ServeSubtitleInput

if TYPE_CHECKING:
    from titulky.state import AppState

VTT_MEDIA_TYPE = "text/vtt; charset=utf-8"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"

_SUBTITLE_SUFFIX_RE = re.compile(r"\.(srt|ass|ssa|sub|txt|smi)$", re.IGNORECASE)


def to_vtt_filename(filename: str) -> str:
    if _SUBTITLE_SUFFIX_RE.search(filename):
        return _SUBTITLE_SUFFIX_RE.sub(".vtt", filename)
    return filename if filename.lower().endswith(".vtt") else f"{filename}.vtt"


def render_vtt(content: str, filename: str) -> str:
    fmt = detect_format(filename)
    if fmt in ("ass", "ssa"):
        return ass_to_vtt(content)
    if fmt == "vtt":
        return content
    return srt_to_vtt(content)


async def handle(
    sub_id: str,
    link_file: str,
    state: AppState,
    *,
    vtt: bool = False,
    username: str = "",
    password: str = "",
) -> dict:
    """Handle a serve_subtitle call.

    A download from the origin runs under the account named by ``username``,
    or the configured account without one.
    """
    log = structlog.get_logger().bind(handler="serve_subtitle", subtitle_id=sub_id)
    log.info("handler_called", vtt=vtt)

    try:
        validated = ServeSubtitleInput(sub_id=sub_id, link_file=link_file, vtt=vtt)
    except ValueError as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            recoverable=False,
        ) from exc

    session = state.account_session(username, password)
    downloader = None
    if session is not state.session:
        downloader = DownloadPipeline(session, state.settings.download)
    served = await state.cache.serve(validated.sub_id, validated.link_file, downloader=downloader)
    log.info("subtitle_served", source=served.source, filename=served.filename)

    if not validated.vtt:
        return {
            "content": served.content,
            "filename": served.filename,
            "media_type": TEXT_MEDIA_TYPE,
            "source": served.source,
        }

    if served.limited:
        content = limit_message(vtt=True)
    else:
        content = render_vtt(served.content, served.filename)
    return {
        "content": content,
        "filename": to_vtt_filename(served.filename),
        "media_type": VTT_MEDIA_TYPE,
        "source": served.source,
    }

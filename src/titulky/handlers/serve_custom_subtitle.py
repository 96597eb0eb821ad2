"""Handler for serve_custom_subtitle.

Serves one user-supplied subtitle from the durable store. ASS/SSA files are
rendered as WebVTT, WebVTT files pass through, anything else is returned as
plain text. ``raw`` skips the conversion. Unlike titulky.com downloads, a
missing file is an error: there is no origin to fall back to.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from titulky.convert import ass_to_vtt, detect_format
from titulky.custom import load_custom_subtitle
from titulky.errors import ErrorCode, TitulkyError
from titulky.models.handlers import ServeCustomSubtitleInput

if TYPE_CHECKING:
    from titulky.state import AppState

VTT_MEDIA_TYPE = "text/vtt; charset=utf-8"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


async def handle(work_key: str, filename: str, state: AppState, *, raw: bool = False) -> dict:
    """Handle a serve_custom_subtitle call."""
    log = structlog.get_logger().bind(
        handler="serve_custom_subtitle", work_key=work_key, filename=filename
    )
    log.info("handler_called", raw=raw)

    try:
        validated = ServeCustomSubtitleInput(work_key=work_key, filename=filename, raw=raw)
    except ValueError as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            recoverable=False,
        ) from exc

    content = await load_custom_subtitle(state.store, validated.work_key, validated.filename)
    if content is None:
        raise TitulkyError(
            code=ErrorCode.NOT_FOUND,
            message=f"No custom subtitle {validated.filename!r} for {validated.work_key!r}",
            recoverable=False,
        )

    fmt = detect_format(validated.filename)
    if validated.raw or fmt not in ("ass", "ssa", "vtt"):
        media_type = TEXT_MEDIA_TYPE
    else:
        media_type = VTT_MEDIA_TYPE
        if fmt != "vtt":
            content = ass_to_vtt(content)

    log.info("custom_subtitle_served", media_type=media_type)
    return {
        "content": content,
        "filename": validated.filename,
        "media_type": media_type,
    }

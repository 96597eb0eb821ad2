"""Handler for convert_subtitle: uploaded SRT/ASS/SSA/VTT bytes to WebVTT."""

from __future__ import annotations

import structlog

from titulky.convert import convert_to_vtt
from titulky.errors import ErrorCode, TitulkyError
from titulky.models.handlers import ConvertSubtitleInput

MAX_UPLOAD_BYTES = 2 * 1024 * 1024


async def handle(content: bytes, source_format: str) -> dict:
    """Handle a convert_subtitle call."""
    log = structlog.get_logger().bind(handler="convert_subtitle", source_format=source_format)
    log.info("handler_called", size=len(content))

    try:
        validated = ConvertSubtitleInput(source_format=source_format)
    except ValueError as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            recoverable=False,
        ) from exc

    if not content:
        raise TitulkyError(code=ErrorCode.INVALID_INPUT, message="Subtitle body is empty")
    if len(content) > MAX_UPLOAD_BYTES:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Subtitle body exceeds {MAX_UPLOAD_BYTES} bytes",
        )

    vtt = convert_to_vtt(content, validated.source_format)
    log.info("convert_complete", output_length=len(vtt))
    return {"content": vtt, "media_type": "text/vtt; charset=utf-8"}

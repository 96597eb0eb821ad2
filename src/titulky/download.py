"""Download pipeline: download page → rate-limit wait → archive → files.

The origin hands out a subtitle in two hops. The ``idown.php`` page either
asks for a CAPTCHA (the daily limit is exhausted) or carries the real file
link plus a ``CountDown(n)`` throttle; the link then returns a zip archive.
"""

from __future__ import annotations

import asyncio
import io
import time
import zipfile
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx
import structlog

from titulky.errors import ErrorCode, TitulkyError
from titulky.models.subtitle import ExtractedSubtitleFile
from titulky.parser import parse_countdown, parse_download_link, requires_captcha

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from titulky.config import DownloadSettings
    from titulky.session import SiteSession

log = structlog.get_logger()

SUBTITLE_EXTENSIONS = frozenset({".srt", ".sub", ".txt", ".smi", ".ssa", ".ass"})

# Logged when the download link is missing, to help spot markup changes
_PAGE_SNIPPET_LENGTH = 500


def extract_subtitles(data: bytes) -> list[ExtractedSubtitleFile]:
    """Unpack subtitle files from a zip archive, ``.srt`` entries first.

    Directories and non-subtitle entries are skipped. Order is otherwise
    the archive's own. Raises TitulkyError(ARCHIVE_CORRUPT) if the bytes
    are not a readable zip.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            files = [
                ExtractedSubtitleFile(filename=info.filename, content=archive.read(info))
                for info in archive.infolist()
                if not info.is_dir()
                and PurePosixPath(info.filename).suffix.lower() in SUBTITLE_EXTENSIONS
            ]
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError) as exc:
        raise TitulkyError(
            code=ErrorCode.ARCHIVE_CORRUPT,
            message=f"Downloaded archive could not be read: {exc}",
        ) from exc

    # sort() is stable, so non-.srt files keep their archive order
    files.sort(key=lambda f: 0 if f.filename.lower().endswith(".srt") else 1)
    return files


class DownloadPipeline:
    """Resolves, fetches and unpacks one subtitle archive from the origin."""

    def __init__(
        self,
        session: SiteSession,
        settings: DownloadSettings,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._settings = settings
        self._sleep = sleep

    async def fetch(self, subtitle_id: str, link_file: str) -> list[ExtractedSubtitleFile] | None:
        """Non-raising variant of :meth:`download`. Returns ``None`` on any failure."""
        try:
            return await self.download(subtitle_id, link_file)
        except TitulkyError as exc:
            log.warning(
                "download_failed",
                subtitle_id=subtitle_id,
                code=exc.code,
                message=exc.message,
            )
            return None
        except httpx.HTTPError:
            log.warning("download_failed", subtitle_id=subtitle_id, exc_info=True)
            return None

    async def download(self, subtitle_id: str, link_file: str) -> list[ExtractedSubtitleFile]:
        """Run the full two-hop download. Raises TitulkyError on every failure."""
        if not await self._session.ensure_authenticated():
            raise TitulkyError(
                code=ErrorCode.AUTH_FAILED,
                message="Not logged in to the subtitle site",
                recoverable=True,
            )

        base_url = self._session.base_url
        log.info("download_started", subtitle_id=subtitle_id)

        page = await self._session.request(
            "GET",
            f"{base_url}/idown.php",
            params={
                "R": str(int(time.time())),
                "titulky": subtitle_id,
                "histstamp": "",
                "zip": "z",
            },
            referer=f"{base_url}/{link_file}.htm",
        )
        content = page.text

        if requires_captcha(content):
            raise TitulkyError(
                code=ErrorCode.CAPTCHA_REQUIRED,
                message="The site requires a CAPTCHA; the daily download limit is exhausted",
                recoverable=True,
            )

        wait_seconds = parse_countdown(content)

        href = parse_download_link(content)
        if href is None:
            log.warning(
                "download_link_missing",
                subtitle_id=subtitle_id,
                page_snippet=content[:_PAGE_SNIPPET_LENGTH],
            )
            raise TitulkyError(
                code=ErrorCode.DOWNLOAD_LINK_MISSING,
                message=f"No download link on the download page for subtitle {subtitle_id}",
            )
        archive_url = href if href.startswith("http") else urljoin(f"{base_url}/", href)

        if wait_seconds > 0:
            bounded = min(float(wait_seconds), self._settings.max_wait_seconds)
            log.info("download_rate_limit_wait", requested=wait_seconds, waiting=bounded)
            await self._sleep(bounded)

        archive = await self._session.request(
            "GET", archive_url, referer=f"{base_url}/idown.php"
        )
        data = archive.content
        if len(data) < self._settings.min_archive_bytes:
            raise TitulkyError(
                code=ErrorCode.DOWNLOAD_TOO_SMALL,
                message=f"Downloaded archive is only {len(data)} bytes",
                recoverable=True,
            )

        files = extract_subtitles(data)
        log.info("download_complete", subtitle_id=subtitle_id, file_count=len(files))
        return files

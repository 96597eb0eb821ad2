from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    AUTH_FAILED = "AUTH_FAILED"
    CAPTCHA_REQUIRED = "CAPTCHA_REQUIRED"
    NO_RESULTS = "NO_RESULTS"
    DOWNLOAD_LINK_MISSING = "DOWNLOAD_LINK_MISSING"
    DOWNLOAD_TOO_SMALL = "DOWNLOAD_TOO_SMALL"
    ARCHIVE_CORRUPT = "ARCHIVE_CORRUPT"
    FETCH_FAILED = "FETCH_FAILED"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"


class TitulkyError(Exception):
    """Raised for every expected failure on the scraping and download path.

    The pipeline and cache layers catch it at their public boundary and
    degrade to an empty or placeholder result. Only INVALID_INPUT,
    UNSUPPORTED_FORMAT and NOT_FOUND are allowed to reach the HTTP layer,
    which serialises them into a JSON error envelope.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }

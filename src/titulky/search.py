"""Cascading subtitle search against titulky.com."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from titulky.errors import TitulkyError
from titulky.parser import parse_search_results

if TYPE_CHECKING:
    from titulky.models.search import SearchResult
    from titulky.session import SiteSession

log = structlog.get_logger()

MIN_TITLE_LENGTH = 2


class SearchEngine:
    """Runs search candidates in order and stops at the first non-empty page."""

    def __init__(self, session: SiteSession) -> None:
        self._session = session

    async def search(self, candidate_titles: list[str]) -> list[SearchResult]:
        """Return the results of the first candidate that yields any.

        This is a cascading OR: later candidates are only tried when every
        earlier one came back empty, and results are never merged. An
        authentication failure short-circuits to an empty list.
        """
        if not await self._session.ensure_authenticated():
            log.warning("search_skipped", reason="not_authenticated")
            return []

        for title in candidate_titles:
            if not title or len(title) < MIN_TITLE_LENGTH:
                continue

            results = await self._search_one(title)
            if results:
                log.info("search_complete", title=title, result_count=len(results))
                return results

        log.info("search_no_results", candidates=len(candidate_titles))
        return []

    async def _search_one(self, title: str) -> list[SearchResult]:
        try:
            response = await self._session.request(
                "GET", f"{self._session.base_url}/", params={"Fulltext": title}
            )
        except TitulkyError:
            log.warning("search_request_failed", title=title, exc_info=True)
            return []

        results = parse_search_results(response.text)
        log.debug("search_page_parsed", title=title, result_count=len(results))
        return results


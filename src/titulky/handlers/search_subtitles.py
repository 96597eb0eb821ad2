"""Handler for search_subtitles.

Receives AppState, turns the request into search candidates (explicit titles,
or titles built from the title resolver's metadata), runs the cascading
search and returns ranked results as a structured dict, preceded by any
user-supplied subtitles stored for the work. No Starlette imports;
server.py handles the HTTP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import structlog

from titulky.custom import custom_work_key, list_custom_subtitles
from titulky.errors import ErrorCode, TitulkyError
from titulky.matcher import build_search_titles, extract_release_tags, rank_results
from titulky.models.handlers import SearchSubtitlesInput, SearchSubtitlesOutput
from titulky.search import SearchEngine

if TYPE_CHECKING:
    from titulky.models.search import CustomSubtitle
    from titulky.state import AppState


async def handle(
    titles: list[str],
    state: AppState,
    *,
    kind: Literal["movie", "series"] = "movie",
    work_id: str = "",
    season: int | None = None,
    episode: int | None = None,
    target_name: str = "",
    playing_filename: str = "",
    prefer_cached: bool = False,
    limit: int = 10,
    username: str = "",
    password: str = "",
) -> dict:
    """Handle a search_subtitles call.

    ``username`` and ``password`` select the titulky.com account to search
    with; without them the configured account is used.
    """
    log = structlog.get_logger().bind(handler="search_subtitles", work_id=work_id)
    log.info("handler_called", title_count=len(titles))

    try:
        validated = SearchSubtitlesInput(
            titles=titles,
            kind=kind,
            work_id=work_id,
            season=season,
            episode=episode,
            target_name=target_name,
            playing_filename=playing_filename,
            prefer_cached=prefer_cached,
            limit=limit,
        )
    except ValueError as exc:
        raise TitulkyError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            recoverable=False,
        ) from exc

    custom: list[CustomSubtitle] = []
    if validated.work_id.strip():
        work_key = custom_work_key(
            validated.kind, validated.work_id.strip(), validated.season, validated.episode
        )
        custom = await list_custom_subtitles(state.store, work_key)

    search_titles = validated.titles
    target = validated.target_name

    if not search_titles:
        if state.title_resolver is None:
            log.warning("search_skipped", reason="no_title_resolver")
            return _empty_output(validated.playing_filename, custom)

        meta = await state.title_resolver.resolve(validated.kind, validated.work_id)
        if meta is None:
            log.info("search_skipped", reason="work_not_resolved")
            return _empty_output(validated.playing_filename, custom)

        search_titles = build_search_titles(
            meta, season=validated.season, episode=validated.episode
        )
        target = target or meta.name

    session = state.account_session(username, password)
    engine = state.search_engine if session is state.session else SearchEngine(session)
    results = await engine.search(search_titles)

    ranked = rank_results(
        results,
        target_name=target,
        playing_filename=validated.playing_filename,
        cached_ids=state.cache.cached_ids,
        prefer_cached=validated.prefer_cached,
        limit=validated.limit,
    )
    log.info("search_ranked", result_count=len(results), returned=len(ranked))

    output = SearchSubtitlesOutput(
        custom_subtitles=custom,
        subtitles=ranked,
        search_titles=search_titles,
        playing_tags=sorted(extract_release_tags(validated.playing_filename)),
    )
    return output.model_dump(mode="json")


def _empty_output(playing_filename: str, custom: list[CustomSubtitle]) -> dict:
    output = SearchSubtitlesOutput(
        custom_subtitles=custom,
        subtitles=[],
        search_titles=[],
        playing_tags=sorted(extract_release_tags(playing_filename)),
    )
    return output.model_dump(mode="json")

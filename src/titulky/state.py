"""Application state container.

AppState is created once at server startup (inside the lifespan context
manager) and handed to every handler by the HTTP layer. It owns every
long-lived service; the mutable tables (local cache, durable index, download
locks) live on the SubtitleCache it holds, the sessions by account on the
SessionPool.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from titulky.cache import SubtitleCache
    from titulky.config import Settings
    from titulky.protocols import ObjectStoreProtocol, TitleResolverProtocol
    from titulky.search import SearchEngine
    from titulky.session import SessionPool, SiteSession


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every handler."""

    settings: Settings
    session: SiteSession
    search_engine: SearchEngine
    store: ObjectStoreProtocol
    cache: SubtitleCache
    http_client: httpx.AsyncClient | None = None
    # External metadata lookup; without it, searches need explicit titles
    title_resolver: TitleResolverProtocol | None = None
    # Per-account sessions for requests carrying their own credentials
    sessions: SessionPool | None = None

    def account_session(self, username: str = "", password: str = "") -> SiteSession:
        """The session for one account. Falls back to the default session."""
        if self.sessions is None or not username:
            return self.session
        return self.sessions.get(username, password)

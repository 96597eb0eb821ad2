"""Authenticated HTTP session against titulky.com.

All scraping I/O goes through a SiteSession, one per titulky.com account,
handed out by a SessionPool. The default session receives an
httpx.AsyncClient via constructor injection and the lifespan owns that
client; the pool owns the clients it creates for other accounts. Cookies
are tracked on the session itself and replayed explicitly, so the login
state is visible and testable independently of httpx's cookie jar.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import TYPE_CHECKING

import httpx
import structlog

from titulky.errors import ErrorCode, TitulkyError

if TYPE_CHECKING:
    from collections.abc import Callable

    from titulky.config import SiteSettings

log = structlog.get_logger()

# The origin answers 200 on both outcomes; only the body tells them apart.
LOGIN_FAILURE_MARKER = "BadLogin"

_SET_COOKIE_RE = re.compile(r"^([^=]+)=([^;]*)")


def build_http_client(site: SiteSettings) -> httpx.AsyncClient:
    """Create an httpx client for one account."""
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=5,
        timeout=httpx.Timeout(site.timeout_seconds),
        headers={
            "User-Agent": site.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "cs,en;q=0.9",
        },
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


class SiteSession:
    """Login freshness, cookie state and request plumbing for one account."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        site: SiteSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._site = site
        self._clock = clock
        self._cookies: dict[str, str] = {}
        self._login_task: asyncio.Task[bool] | None = None
        self.authenticated = False
        self.last_login_at: float | None = None

    @property
    def base_url(self) -> str:
        return self._site.base_url.rstrip("/")

    @property
    def cookies(self) -> dict[str, str]:
        return dict(self._cookies)

    def is_fresh(self) -> bool:
        """True while a successful login is younger than the login TTL."""
        if not self.authenticated or self.last_login_at is None:
            return False
        age = self._clock() - self.last_login_at
        return age < self._site.login_ttl_minutes * 60

    async def ensure_authenticated(self) -> bool:
        """Log in unless the session is fresh.

        Concurrent callers share one login attempt: the first caller starts
        the task, later callers await the same task.
        """
        if self.is_fresh():
            return True

        task = self._login_task
        if task is None:
            task = asyncio.create_task(self._login())
            self._login_task = task
            task.add_done_callback(self._clear_login_task)
        return await asyncio.shield(task)

    def _clear_login_task(self, task: asyncio.Task[bool]) -> None:
        if self._login_task is task:
            self._login_task = None

    async def _login(self) -> bool:
        if not self._site.username:
            log.warning("login_skipped", reason="no_username")
            self.authenticated = False
            return False

        log.info("login_started", username=self._site.username)
        try:
            response = await self.request(
                "POST",
                f"{self.base_url}/index.php",
                data={
                    "Login": self._site.username,
                    "Password": self._site.password,
                    "foreverlog": "0",
                    "Detail2": "",
                },
                headers={"Origin": self.base_url},
            )
        except TitulkyError:
            log.warning("login_failed", reason="network", exc_info=True)
            self.authenticated = False
            return False

        if LOGIN_FAILURE_MARKER in response.text:
            log.warning("login_failed", reason="bad_credentials")
            self.authenticated = False
            return False

        self.authenticated = True
        self.last_login_at = self._clock()
        log.info("login_complete", cookie_count=len(self._cookies))
        return True

    async def request(
        self,
        method: str,
        url: str,
        *,
        referer: str | None = None,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request replaying the accumulated cookies.

        Raises TitulkyError(FETCH_FAILED) on transport errors. Status codes are
        not checked here: the origin signals most failures in the body.
        """
        request_headers: dict[str, str] = {}
        if self._cookies:
            request_headers["Cookie"] = self.cookie_header()
        if referer:
            request_headers["Referer"] = referer
        if headers:
            request_headers.update(headers)

        try:
            response = await self._client.request(
                method, url, params=params, headers=request_headers, data=data
            )
        except httpx.HTTPError as exc:
            raise TitulkyError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                recoverable=True,
            ) from exc

        self.merge_cookies(response)
        log.debug(
            "site_request_complete",
            method=method,
            url=url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response

    def merge_cookies(self, response: httpx.Response) -> None:
        """Fold every Set-Cookie pair into the session; later names win.

        Redirect hops are read first, so a cookie set on a 302 survives.
        """
        for hop in (*response.history, response):
            for raw in hop.headers.get_list("set-cookie"):
                match = _SET_COOKIE_RE.match(raw)
                if match:
                    self._cookies[match.group(1).strip()] = match.group(2).strip()

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())


class SessionPool:
    """One SiteSession per titulky.com account.

    Requests without credentials, or with the configured ones, use the
    default session. Any other account gets its own session on its own
    httpx client, created on first use, so cookie jars never mix between
    accounts. A new password for a known username replaces its session.
    """

    def __init__(
        self,
        site: SiteSettings,
        client: httpx.AsyncClient,
        *,
        client_factory: Callable[[SiteSettings], httpx.AsyncClient] = build_http_client,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._site = site
        self._client_factory = client_factory
        self._clock = clock
        self.default = SiteSession(client, site, clock=clock)
        # username -> (password, session)
        self._sessions: dict[str, tuple[str, SiteSession]] = {}
        self._clients: dict[str, httpx.AsyncClient] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, username: str = "", password: str = "") -> SiteSession:
        if not username or (username, password) == (self._site.username, self._site.password):
            return self.default

        held = self._sessions.get(username)
        if held is not None and held[0] == password:
            return held[1]

        client = self._clients.get(username)
        if client is None:
            client = self._client_factory(self._site)
            self._clients[username] = client
        site = self._site.model_copy(update={"username": username, "password": password})
        session = SiteSession(client, site, clock=self._clock)
        self._sessions[username] = (password, session)
        log.info("account_session_created", username=username, accounts=len(self._sessions))
        return session

    async def aclose(self) -> None:
        """Close the per-account clients. The default client belongs to the caller."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
        self._sessions.clear()

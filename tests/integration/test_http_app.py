"""End-to-end tests for the Starlette routes through httpx's ASGI transport.

The app is built without its lifespan; the wired AppState from conftest is
attached directly so no database file or real origin is touched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import respx

from titulky import __version__
from titulky.server import create_app
from titulky.transport import CORSMiddleware

if TYPE_CHECKING:
    from titulky.state import AppState

SRT_TEXT = "1\n00:00:01,000 --> 00:00:02,000\nAhoj\n"


def _client(app_state: AppState) -> httpx.AsyncClient:
    app = create_app(app_state.settings, with_lifespan=False)
    app.state.app_state = app_state
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=CORSMiddleware(app)),
        base_url="http://localhost",
    )


class TestHealthz:
    async def test_reports_status(self, app_state: AppState) -> None:
        await app_state.store.put("subs/100001.srt", SRT_TEXT.encode())
        await app_state.cache.load_index()
        async with _client(app_state) as client:
            response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "version": __version__,
            "authenticated": False,
            "cached_subtitles": 1,
        }
        assert response.headers["access-control-allow-origin"] == "*"


class TestSearchRoute:
    async def test_search_by_title(self, app_state: AppState) -> None:
        base = app_state.settings.site.base_url
        listing = (
            '<table><tr class="r1"><td><a href="/iron-man-100001.htm" '
            'title="Iron.Man.2008.1080p.BluRay">Iron Man</a></td></tr></table>'
        )
        with respx.mock:
            respx.post(f"{base}/index.php").mock(return_value=httpx.Response(200, text="ok"))
            respx.get(f"{base}/").mock(return_value=httpx.Response(200, text=listing))
            async with _client(app_state) as client:
                response = await client.get(
                    "/search",
                    params=[("title", "Iron Man"), ("target_name", "Iron Man"), ("limit", "5")],
                )

        assert response.status_code == 200
        body = response.json()
        assert [item["result"]["id"] for item in body["subtitles"]] == ["100001"]
        assert body["search_titles"] == ["Iron Man"]

    async def test_missing_title_is_400(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.get("/search")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    async def test_basic_auth_selects_account(self, app_state: AppState) -> None:
        base = app_state.settings.site.base_url
        with respx.mock:
            login = respx.post(f"{base}/index.php").mock(
                return_value=httpx.Response(200, text="ok")
            )
            respx.get(f"{base}/").mock(return_value=httpx.Response(200, text="<p></p>"))
            async with _client(app_state) as client:
                response = await client.get(
                    "/search", params={"title": "Iron Man"}, auth=("bob", "hunter2")
                )

        assert response.status_code == 200
        assert "Login=bob" in login.calls.last.request.content.decode()

    async def test_malformed_authorization_is_400(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.get(
                "/search",
                params={"title": "Iron Man"},
                headers={"Authorization": "Basic not-base64!"},
            )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    async def test_non_integer_season_is_400(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.get("/search", params={"work_id": "tt1", "season": "one"})

        assert response.status_code == 400
        assert "season" in response.json()["error"]["message"]


class TestServeRoute:
    async def test_plain_subtitle_is_attachment(self, app_state: AppState) -> None:
        await app_state.store.put(
            "subs/100001.srt", SRT_TEXT.encode(), {"filename": "Iron Man.srt"}
        )
        async with _client(app_state) as client:
            response = await client.get("/sub/100001/iron-man-100001")

        assert response.status_code == 200
        assert response.text == SRT_TEXT
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert response.headers["content-disposition"] == 'attachment; filename="Iron%20Man.srt"'
        assert response.headers["x-subtitle-source"] == "store"

    async def test_vtt_is_inline(self, app_state: AppState) -> None:
        await app_state.store.put("subs/100001.srt", SRT_TEXT.encode(), {"filename": "a.srt"})
        async with _client(app_state) as client:
            response = await client.get("/sub/100001/iron-man-100001", params={"vtt": "1"})

        assert response.status_code == 200
        assert response.text.startswith("WEBVTT\n\n")
        assert response.headers["content-type"] == "text/vtt; charset=utf-8"
        assert response.headers["content-disposition"] == 'inline; filename="a.vtt"'

    async def test_invalid_id_is_400(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.get("/sub/abc/iron-man")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"


class TestCustomSubtitleRoutes:
    async def test_ass_served_as_vtt(self, app_state: AppState) -> None:
        ass = "[Events]\nDialogue: 0,0:00:01.00,0:00:02.00,Default,,0,0,0,,Ahoj\n"
        await app_state.store.put("custom/tt0371746/Můj překlad.ass", ass.encode())
        async with _client(app_state) as client:
            response = await client.get("/custom-sub/tt0371746/M%C5%AFj%20p%C5%99eklad.ass")

        assert response.status_code == 200
        assert response.text == "WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nAhoj\n"
        assert response.headers["content-type"] == "text/vtt; charset=utf-8"
        assert response.headers["content-disposition"] == (
            'inline; filename="M%C5%AFj%20p%C5%99eklad.ass"'
        )

    async def test_raw_route(self, app_state: AppState) -> None:
        ass = "[Events]\nDialogue: 0,0:00:01.00,0:00:02.00,Default,,0,0,0,,Ahoj\n"
        await app_state.store.put("custom/tt0371746/a.ass", ass.encode())
        async with _client(app_state) as client:
            response = await client.get("/custom-sub-raw/tt0371746/a.ass")

        assert response.status_code == 200
        assert response.text == ass
        assert response.headers["content-type"] == "text/plain; charset=utf-8"

    async def test_missing_is_404(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.get("/custom-sub/tt0371746/a.srt")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestConvertRoute:
    async def test_convert_srt(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.post(
                "/convert", params={"format": "srt"}, content=SRT_TEXT.encode()
            )

        assert response.status_code == 200
        assert response.text == "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nAhoj\n"
        assert response.headers["content-type"] == "text/vtt; charset=utf-8"

    async def test_unsupported_format_is_415(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.post("/convert", params={"format": "sub"}, content=b"x")

        assert response.status_code == 415
        assert response.json()["error"]["code"] == "UNSUPPORTED_FORMAT"

    async def test_empty_body_is_400(self, app_state: AppState) -> None:
        async with _client(app_state) as client:
            response = await client.post("/convert", content=b"")

        assert response.status_code == 400

from __future__ import annotations

import httpx
import pytest

from steam_prices.clients.errors import AuthenticationError, SessionError
from steam_prices.clients.session import SteamSession, login_with_retry
from steam_prices.config import Settings

from conftest import SleepRecorder


def _session(handler, *, cookie: str | None = "token") -> SteamSession:  # type: ignore[no-untyped-def]
    cookies = {"steamLoginSecure": cookie} if cookie else {}
    client = httpx.AsyncClient(
        base_url="https://steamcommunity.test",
        transport=httpx.MockTransport(handler),
        cookies=cookies,
    )
    return SteamSession(client)


@pytest.mark.asyncio
async def test_get_returns_status_and_body() -> None:
    async with _session(lambda req: httpx.Response(404, text="nope")) as session:
        assert await session.get("/market/pricehistory/") == (404, "nope")


@pytest.mark.asyncio
async def test_transport_error_becomes_session_error() -> None:
    def _handler(req: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=req)

    async with _session(_handler) as session:
        with pytest.raises(SessionError):
            await session.get("/market/")


LOGGED_IN_PAGE = '<script>var g_steamID = "76561198000000000";</script>'
ANONYMOUS_PAGE = "<script>var g_steamID = false;</script>"


@pytest.mark.asyncio
async def test_login_retries_until_probe_succeeds(sleeper: SleepRecorder) -> None:
    answers = iter(
        [
            httpx.Response(302),
            httpx.Response(200, text=ANONYMOUS_PAGE),
            httpx.Response(200, text=LOGGED_IN_PAGE),
        ]
    )
    async with _session(lambda req: next(answers)) as session:
        await login_with_retry(session, max_retries=3, retry_delay=10.0, sleep=sleeper)
    assert sleeper.calls == [10.0, 20.0]


@pytest.mark.asyncio
async def test_login_gives_up_on_anonymous_page(sleeper: SleepRecorder) -> None:
    async with _session(lambda req: httpx.Response(200, text=ANONYMOUS_PAGE)) as session:
        with pytest.raises(AuthenticationError):
            await login_with_retry(session, max_retries=2, retry_delay=0, sleep=sleeper)
    assert len(sleeper.calls) == 2


@pytest.mark.asyncio
async def test_login_gives_up_on_redirect(sleeper: SleepRecorder) -> None:
    async with _session(lambda req: httpx.Response(302)) as session:
        with pytest.raises(AuthenticationError):
            await login_with_retry(session, max_retries=2, retry_delay=0, sleep=sleeper)
    assert len(sleeper.calls) == 2


@pytest.mark.asyncio
async def test_login_without_credentials_fails_fast(sleeper: SleepRecorder) -> None:
    calls: list[str] = []

    def _handler(req: httpx.Request) -> httpx.Response:
        calls.append(str(req.url))
        return httpx.Response(200)

    async with _session(_handler, cookie=None) as session:
        with pytest.raises(AuthenticationError):
            await login_with_retry(session, sleep=sleeper)
    assert calls == [] and sleeper.calls == []


def test_catalog_endpoints_parsing() -> None:
    s = Settings(CATALOG_ENDPOINTS=" a.json, ,b.json,")
    assert s.catalog_endpoints() == ["a.json", "b.json"]
    assert len(Settings().catalog_endpoints()) == 10

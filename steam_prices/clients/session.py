from __future__ import annotations

import asyncio
import re
from types import TracebackType
from typing import Protocol

import httpx

from ..config import settings
from ..logging import get_logger
from .backoff import SleepFn, with_backoff
from .errors import AuthenticationError, SessionError, UpstreamError

_log = get_logger()
HTTP_OK = 200

# Only a logged-in market page carries a numeric steam id; anonymous pages say `false`
LOGGED_IN_MARKER = re.compile(r'g_steamID\s*=\s*"(\d+)"')


class MarketSession(Protocol):
    """Anything that can issue an authenticated GET.

    Returns `(status_code, body)`; raises `SessionError` when the request
    could not be made at all.
    """

    async def get(self, url: str) -> tuple[int, str]: ...


def _client() -> httpx.AsyncClient:
    cookies: dict[str, str] = {}
    if settings.STEAM_LOGIN_SECURE:
        cookies["steamLoginSecure"] = settings.STEAM_LOGIN_SECURE
    if settings.STEAM_SESSION_ID:
        cookies["sessionid"] = settings.STEAM_SESSION_ID
    return httpx.AsyncClient(
        base_url=str(settings.STEAM_COMMUNITY_BASE),
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT),
        headers={"User-Agent": settings.USER_AGENT},
        cookies=cookies,
        http2=True,
    )


class SteamSession:
    """Cookie-authenticated session against the Steam community market."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or _client()

    async def __aenter__(self) -> "SteamSession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def has_credentials(self) -> bool:
        return bool(self._client.cookies.get("steamLoginSecure"))

    async def get(self, url: str) -> tuple[int, str]:
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise SessionError(f"GET {url} failed: {exc!r}") from exc
        return resp.status_code, resp.text

    async def login(self) -> None:
        status, body = await self.get("/market/")
        if status != HTTP_OK:
            raise AuthenticationError(f"market probe answered HTTP {status}")
        match = LOGGED_IN_MARKER.search(body)
        if match is None:
            raise AuthenticationError("market page served to an anonymous visitor")
        _log.info("steam_login_ok", steam_id=match.group(1))


async def login_with_retry(
    session: SteamSession,
    *,
    max_retries: int | None = None,
    retry_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Validate the session before any item is processed.

    Raises `AuthenticationError` once retries are exhausted, or right away
    when no credentials are configured.
    """
    if not session.has_credentials():
        raise AuthenticationError("STEAM_LOGIN_SECURE is not configured")
    try:
        await with_backoff(
            session.login,
            label="steam_login",
            max_retries=settings.LOGIN_RETRY_MAX if max_retries is None else max_retries,
            base_delay=settings.LOGIN_RETRY_DELAY if retry_delay is None else retry_delay,
            retry_on=(AuthenticationError, UpstreamError),
            sleep=sleep,
        )
    except (AuthenticationError, UpstreamError) as exc:
        raise AuthenticationError(f"failed to log in: {exc}") from exc

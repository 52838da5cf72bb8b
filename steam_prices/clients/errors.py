from __future__ import annotations


class UpstreamError(Exception):
    """Base for failures talking to an upstream service. Always retryable."""


class UpstreamStatusError(UpstreamError):
    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code
        self.url = url


class RateLimitedError(UpstreamStatusError):
    """Upstream answered 429."""


class MalformedResponseError(UpstreamError):
    pass


class SessionError(UpstreamError):
    """The session collaborator could not complete the request."""


class AuthenticationError(Exception):
    pass


HTTP_TOO_MANY_REQUESTS = 429


def raise_for_status(status_code: int, url: str) -> None:
    if status_code == HTTP_TOO_MANY_REQUESTS:
        raise RateLimitedError(status_code, url)
    if not 200 <= status_code < 300:
        raise UpstreamStatusError(status_code, url)

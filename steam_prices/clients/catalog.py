from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ..config import settings
from ..logging import get_logger
from .backoff import SleepFn, with_backoff
from .errors import MalformedResponseError, raise_for_status

_log = get_logger()

NAME_FIELD = "market_hash_name"


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=str(settings.CATALOG_BASE),
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT),
        headers={"User-Agent": settings.USER_AGENT},
        http2=True,
    )


def _names(data: list[Any]) -> list[str]:
    out: list[str] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = item.get(NAME_FIELD)
        if isinstance(name, str) and name:
            out.append(name)
    return out


async def _fetch_listing(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    max_retries: int | None,
    base_delay: float | None,
    sleep: SleepFn,
) -> list[str]:
    async def _get() -> list[str]:
        resp = await client.get(f"/{endpoint}")
        raise_for_status(resp.status_code, endpoint)
        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{endpoint}: body is not JSON") from exc
        if not isinstance(data, list):
            raise MalformedResponseError(f"{endpoint}: expected a JSON array")
        return _names(data)

    try:
        names = await with_backoff(
            _get,
            label=f"catalog:{endpoint}",
            max_retries=max_retries,
            base_delay=base_delay,
            sleep=sleep,
        )
    except Exception as exc:
        # One listing down must not empty the whole catalog
        _log.error("catalog_listing_skipped", endpoint=endpoint, error=repr(exc))
        return []
    _log.info("catalog_listing_loaded", endpoint=endpoint, count=len(names))
    return names


async def get_all_item_names(
    endpoints: list[str] | None = None,
    *,
    max_retries: int | None = None,
    base_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> list[str]:
    """Resolve the catalog: the de-duplicated union of all listing endpoints.

    Listings are fetched concurrently; order follows `endpoints`, then each
    listing's own order. Returns an empty list when every listing failed.
    """
    eps = settings.catalog_endpoints() if endpoints is None else endpoints
    async with _client() as client:
        listings = await asyncio.gather(
            *(
                _fetch_listing(
                    client, ep, max_retries=max_retries, base_delay=base_delay, sleep=sleep
                )
                for ep in eps
            )
        )

    seen: set[str] = set()
    names: list[str] = []
    for listing in listings:
        for name in listing:
            if name not in seen:
                seen.add(name)
                names.append(name)
    _log.info("catalog_resolved", listings=len(eps), count=len(names))
    return names

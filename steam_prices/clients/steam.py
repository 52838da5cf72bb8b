from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from ..config import settings
from ..logging import get_logger
from ..models.market import PricePoint
from .backoff import SleepFn, with_backoff
from .errors import MalformedResponseError, raise_for_status
from .session import MarketSession

_log = get_logger()

# Steam renders history timestamps like "Jul 02 2014 01: +0"
STEAM_TIME_FORMAT = "%b %d %Y %H:"


def price_history_url(name: str) -> str:
    base = str(settings.STEAM_COMMUNITY_BASE).rstrip("/")
    return (
        f"{base}/market/pricehistory/"
        f"?appid={settings.STEAM_APP_ID}&market_hash_name={quote(name, safe='')}"
    )


def parse_steam_time(raw: str) -> int | None:
    """Parse an upstream timestamp into epoch millis (UTC), or None."""
    text = raw.strip()
    head, sep, offset = text.rpartition(" ")
    if sep and offset.startswith(("+", "-")):
        text = head
        try:
            hours = int(offset)
        except ValueError:
            return None
    else:
        hours = 0
    try:
        dt = datetime.strptime(text, STEAM_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        try:
            dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        hours = 0
    return int(dt.timestamp() * 1000) - hours * 3_600_000


def parse_price_row(row: Any) -> PricePoint | None:
    if not isinstance(row, Sequence) or isinstance(row, str) or len(row) < 3:
        return None
    raw_time, raw_value, raw_volume = row[0], row[1], row[2]
    if not isinstance(raw_time, str):
        return None
    ts = parse_steam_time(raw_time)
    if ts is None:
        return None
    try:
        value = float(raw_value)
        volume = int(raw_volume)
    except (TypeError, ValueError):
        return None
    if volume < 0 or not math.isfinite(value):
        return None
    return PricePoint(time=ts, value=value, volume=volume)


def parse_price_history(body: str) -> list[PricePoint]:
    """Turn a price-history body into points.

    A body that is not a JSON object raises `MalformedResponseError`; a
    missing or non-list `prices` field is an item without trades.
    """
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise MalformedResponseError("price history body is not JSON") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError("price history body is not an object")
    rows = data.get("prices")
    if not isinstance(rows, list):
        return []
    points: list[PricePoint] = []
    for row in rows:
        point = parse_price_row(row)
        if point is not None:
            points.append(point)
    dropped = len(rows) - len(points)
    if dropped:
        _log.debug("price_rows_dropped", dropped=dropped, kept=len(points))
    return points


async def fetch_price_history(
    session: MarketSession,
    name: str,
    *,
    max_retries: int | None = None,
    base_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> list[PricePoint]:
    """Fetch price history for one item.

    Transport failures, 429s, other non-2xx statuses and unparsable bodies
    are retried with backoff; the last failure propagates once retries run out.
    """
    url = price_history_url(name)

    async def _get() -> list[PricePoint]:
        status, body = await session.get(url)
        raise_for_status(status, url)
        return parse_price_history(body)

    points = await with_backoff(
        _get,
        label=f"pricehistory:{name}",
        max_retries=max_retries,
        base_delay=base_delay,
        sleep=sleep,
    )
    _log.debug("steam_price_history_fetched", item=name, points=len(points))
    return points

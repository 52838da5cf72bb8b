from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from ..db.store import FileStore, PriceStoreCorruptError
from ..logging import get_logger
from ..models.market import PriceSummary

_log = get_logger()


def merge_prices(
    existing: Mapping[str, Any], new: Mapping[str, PriceSummary]
) -> dict[str, Any]:
    """Fold `new` over `existing`; every existing key survives. Keys sorted."""
    merged: dict[str, Any] = dict(existing)
    for name, summary in new.items():
        merged[name] = summary.model_dump()
    return {name: merged[name] for name in sorted(merged)}


def persist_prices(
    store: FileStore,
    new: Mapping[str, PriceSummary],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Read-modify-write of the price store at the end of a run.

    Writes the unsorted full snapshot first, then the canonical sorted
    `latest.json`. Returns the sorted merged map. A corrupt store still gets
    this run's results written to the snapshot before the error propagates.
    """
    at = now or datetime.now(timezone.utc)
    try:
        existing = store.load_prices()
    except PriceStoreCorruptError:
        # Keep this run's results next to the broken store before giving up
        snapshot = store.save_snapshot({k: v.model_dump() for k, v in new.items()}, at)
        _log.error("prices_saved_to_snapshot_only", snapshot=str(snapshot), updated=len(new))
        raise
    unsorted: dict[str, Any] = {**existing, **{k: v.model_dump() for k, v in new.items()}}
    merged = merge_prices(existing, new)

    snapshot = store.save_snapshot(unsorted, at)
    latest = store.save_latest(merged)
    _log.info(
        "prices_saved",
        latest=str(latest),
        snapshot=str(snapshot),
        total=len(merged),
        updated=len(new),
        added=sum(1 for k in new if k not in existing),
    )
    return merged

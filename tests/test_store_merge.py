from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from steam_prices.db.store import FileStore, PriceStoreCorruptError
from steam_prices.models.market import PriceSummary, RunCursor
from steam_prices.services.merge import merge_prices, persist_prices

NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_merge_overwrites_and_keeps_existing() -> None:
    existing = {"b": {"steam": 1.0}, "a": {"steam": 2.0}, "z": {"steam": 3.0, "buff": 2.9}}
    new = {"b": PriceSummary(steam=9.0), "c": PriceSummary(steam=4.0)}

    merged = merge_prices(existing, new)

    assert list(merged) == ["a", "b", "c", "z"]
    assert merged["b"] == {"steam": 9.0}
    assert merged["z"] == {"steam": 3.0, "buff": 2.9}


def test_merge_is_idempotent() -> None:
    existing = {"a": {"steam": 2.0}}
    new = {"a": PriceSummary(steam=5.0), "b": PriceSummary(steam=1.0)}
    once = merge_prices(existing, new)
    assert merge_prices(once, new) == once


def test_persist_writes_sorted_latest_and_snapshot(store: FileStore) -> None:
    store.save_latest({"m": {"steam": 1.0}, "x": {"steam": 2.0}})

    merged = persist_prices(store, {"b": PriceSummary(steam=3.5)}, now=NOW)

    latest_text = store.latest_path.read_text(encoding="utf-8")
    assert list(json.loads(latest_text)) == ["b", "m", "x"]
    assert merged == json.loads(latest_text)

    snapshot = store.snapshot_path(NOW)
    assert snapshot.name == "prices_20260102T030405Z.json"
    assert set(json.loads(snapshot.read_text(encoding="utf-8"))) == {"b", "m", "x"}

    # no temp files left behind
    assert not [p for p in store.prices_dir.iterdir() if p.suffix == ".tmp"]


def test_persist_twice_is_stable(store: FileStore) -> None:
    new = {"a": PriceSummary(steam=1.0)}
    first = persist_prices(store, new, now=NOW)
    second = persist_prices(store, new, now=NOW)
    assert first == second == {"a": {"steam": 1.0}}


def test_missing_store_is_empty(store: FileStore) -> None:
    assert store.load_prices() == {}


def test_corrupt_store_is_not_overwritten(store: FileStore) -> None:
    store.latest_path.write_text("{ truncated", encoding="utf-8")
    with pytest.raises(PriceStoreCorruptError):
        persist_prices(store, {"a": PriceSummary(steam=1.0)}, now=NOW)
    assert store.latest_path.read_text(encoding="utf-8") == "{ truncated"
    # the run's results are still kept in the snapshot
    snapshot = json.loads(store.snapshot_path(NOW).read_text(encoding="utf-8"))
    assert snapshot == {"a": {"steam": 1.0}}


def test_store_holding_a_list_is_corrupt(store: FileStore) -> None:
    store.latest_path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(PriceStoreCorruptError):
        store.load_prices()


def test_cursor_round_trip_and_defaults(store: FileStore) -> None:
    assert store.load_cursor().last_index == 0
    store.save_cursor(RunCursor(last_index=42))
    assert json.loads(store.state_path.read_text(encoding="utf-8")) == {"lastIndex": 42}
    assert store.load_cursor().last_index == 42

    store.state_path.write_text("garbage", encoding="utf-8")
    assert store.load_cursor().last_index == 0

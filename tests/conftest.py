from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from steam_prices.db.store import FileStore


class FakeSession:
    """Session double: maps a URL to a queue of (status, body) or exceptions."""

    def __init__(self, handler: Callable[[str], Any]) -> None:
        self._handler = handler
        self.urls: list[str] = []

    async def get(self, url: str) -> tuple[int, str]:
        self.urls.append(url)
        res = self._handler(url)
        if isinstance(res, BaseException):
            raise res
        return res


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def history_body(rows: list[list[Any]]) -> str:
    return json.dumps({"success": True, "prices": rows})


@pytest.fixture()
def store(tmp_path: Path) -> FileStore:
    s = FileStore(tmp_path / "static")
    s.ensure_dirs()
    return s


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..config import settings
from ..logging import get_logger
from ..models.market import RunCursor

_log = get_logger()


class PriceStoreCorruptError(ValueError):
    """`latest.json` exists but cannot be merged into; it is never overwritten."""


def read_json(path: Path) -> Any | None:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, value: Any, *, indent: int | None = 4) -> None:
    """Write JSON so readers only ever see the old or the new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=indent)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class FileStore:
    """On-disk layout for run state and price artifacts.

    Layout under `root`:
      - state.json                    resume cursor
      - prices/latest.json            canonical store, keys sorted
      - prices/prices_<ts>.json       per-run full snapshot
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root if root is not None else settings.DATA_DIR)

    @property
    def state_path(self) -> Path:
        return self.root / "state.json"

    @property
    def prices_dir(self) -> Path:
        return self.root / "prices"

    @property
    def latest_path(self) -> Path:
        return self.prices_dir / "latest.json"

    def snapshot_path(self, at: datetime) -> Path:
        return self.prices_dir / f"prices_{at.astimezone(timezone.utc):%Y%m%dT%H%M%SZ}.json"

    def ensure_dirs(self) -> None:
        self.prices_dir.mkdir(parents=True, exist_ok=True)

    def load_cursor(self) -> RunCursor:
        try:
            raw = read_json(self.state_path)
            if raw is None:
                return RunCursor()
            return RunCursor.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            # A torn or hand-edited state file restarts from the top
            _log.warning("state_unreadable", path=str(self.state_path), error=repr(exc))
            return RunCursor()

    def save_cursor(self, cursor: RunCursor) -> None:
        write_json_atomic(self.state_path, cursor.model_dump(by_alias=True), indent=None)

    def load_prices(self) -> dict[str, Any]:
        """Existing store as raw JSON entries; missing file reads as empty.

        Entries are kept as stored so fields this version does not know about
        survive a merge.
        """
        try:
            raw = read_json(self.latest_path)
        except ValueError as exc:
            _log.error("price_store_unreadable", path=str(self.latest_path), error=repr(exc))
            raise PriceStoreCorruptError(f"{self.latest_path} is not valid JSON") from exc
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise PriceStoreCorruptError(f"{self.latest_path} does not hold a JSON object")
        return {str(name): entry for name, entry in raw.items()}

    def save_latest(self, prices: dict[str, Any]) -> Path:
        write_json_atomic(self.latest_path, prices)
        return self.latest_path

    def save_snapshot(self, prices: dict[str, Any], at: datetime) -> Path:
        path = self.snapshot_path(at)
        write_json_atomic(path, prices)
        return path

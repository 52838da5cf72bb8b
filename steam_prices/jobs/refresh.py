from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace

from ..clients.backoff import SleepFn
from ..clients.catalog import get_all_item_names
from ..clients.session import MarketSession
from ..clients.steam import fetch_price_history
from ..config import settings
from ..db.store import FileStore
from ..logging import get_logger
from ..models.market import PricePoint, PriceSummary, RunCursor
from ..services.merge import persist_prices
from ..services.metrics import weighted_average_price

_log = get_logger()

FetchFn = Callable[[MarketSession, str], Awaitable[list[PricePoint]]]
ResolveFn = Callable[[], Awaitable[list[str]]]
ClockFn = Callable[[], float]


class CatalogEmptyError(Exception):
    """No item could be resolved from any listing."""


@dataclass(frozen=True)
class ItemOutcome:
    name: str
    points: tuple[PricePoint, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class RunState:
    prices: Mapping[str, PriceSummary] = field(default_factory=dict)
    failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunReport:
    total: int
    start: int
    succeeded: int
    failed: tuple[str, ...]
    completed: bool
    cursor: int


def apply_batch(state: RunState, outcomes: Iterable[ItemOutcome]) -> RunState:
    """Fold one settled batch into a new state.

    Non-empty histories become a price summary; empty histories and errors
    land in the failure list once.
    """
    prices = dict(state.prices)
    failed = list(state.failed)
    for outcome in outcomes:
        if outcome.error is None and outcome.points:
            prices[outcome.name] = PriceSummary(steam=weighted_average_price(outcome.points))
            if outcome.name in failed:
                failed.remove(outcome.name)
        elif outcome.name not in failed:
            failed.append(outcome.name)
    return RunState(prices=prices, failed=tuple(failed))


def rate_delay(requests_per_minute: int, batch_size: int) -> float:
    """Seconds to wait between batches so `batch_size` requests fit the ceiling."""
    if requests_per_minute <= 0:
        return 0.0
    return (60.0 / requests_per_minute) * batch_size


class BatchRunner:
    """Drives a resolved catalog through the price fetcher.

    Progress is checkpointed to `store` after every batch; the wall-clock
    budget is measured from `started_at` on `clock`.
    """

    def __init__(
        self,
        session: MarketSession,
        store: FileStore,
        *,
        started_at: float,
        fetch: FetchFn = fetch_price_history,
        batch_size: int | None = None,
        requests_per_minute: int | None = None,
        max_duration: float | None = None,
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._session = session
        self._store = store
        self._started_at = started_at
        self._fetch = fetch
        self.batch_size = max(1, batch_size or settings.BATCH_SIZE)
        self.requests_per_minute = (
            settings.REQUESTS_PER_MINUTE if requests_per_minute is None else requests_per_minute
        )
        self.max_duration = settings.MAX_DURATION if max_duration is None else max_duration
        self._clock = clock
        self._sleep = sleep

    def _out_of_time(self) -> bool:
        return self._clock() - self._started_at >= self.max_duration

    async def _fetch_one(self, name: str) -> ItemOutcome:
        try:
            points = await self._fetch(self._session, name)
        except Exception as exc:
            _log.warning("item_fetch_failed", item=name, error=repr(exc))
            return ItemOutcome(name=name, error=repr(exc))
        if not points:
            _log.info("item_without_prices", item=name)
        return ItemOutcome(name=name, points=tuple(points))

    async def fetch_batch(self, batch: list[str]) -> list[ItemOutcome]:
        return list(await asyncio.gather(*(self._fetch_one(name) for name in batch)))

    async def run_batches(
        self, items: list[str], start: int, state: RunState
    ) -> tuple[RunState, bool, int]:
        """Process `items[start:]`. Returns (state, completed, cursor)."""
        total = len(items)
        working = items[start:]
        size = self.batch_size
        n_batches = (len(working) + size - 1) // size
        delay = rate_delay(self.requests_per_minute, size)
        cursor = start

        for i in range(0, len(working), size):
            if self._out_of_time():
                cursor = (start + i) % total
                self._store.save_cursor(RunCursor(last_index=cursor))
                _log.info(
                    "max_duration_reached",
                    cursor=cursor,
                    elapsed_s=round(self._clock() - self._started_at, 1),
                )
                return state, False, cursor

            batch = working[i : i + size]
            state = apply_batch(state, await self.fetch_batch(batch))

            next_offset = min(i + size, len(working))
            cursor = (start + next_offset) % total
            self._store.save_cursor(RunCursor(last_index=cursor))
            _log.info(
                "batch_processed",
                batch=i // size + 1,
                batches=n_batches,
                cursor=cursor,
                failed=len(state.failed),
            )

            if next_offset < len(working) and delay > 0:
                _log.debug("rate_limit_sleep", seconds=delay)
                await self._sleep(delay)

        return state, True, cursor

    async def second_pass(self, state: RunState) -> RunState:
        """Retry every failed item once, one at a time."""
        retry = list(state.failed)
        state = replace(state, failed=())
        _log.info("second_pass_started", items=len(retry))
        delay = rate_delay(self.requests_per_minute, 1)
        for idx, name in enumerate(retry):
            state = apply_batch(state, await self.fetch_batch([name]))
            if idx < len(retry) - 1 and delay > 0:
                await self._sleep(delay)
        _log.info("second_pass_finished", recovered=len(retry) - len(state.failed))
        return state

    async def run(self, items: list[str]) -> tuple[RunState, RunReport]:
        if not items:
            raise CatalogEmptyError("catalog is empty")

        start = self._store.load_cursor().last_index % len(items)
        _log.info("run_resumed", total=len(items), start=start, batch_size=self.batch_size)

        state, completed, cursor = await self.run_batches(items, start, RunState())
        if completed and state.failed:
            state = await self.second_pass(state)

        report = RunReport(
            total=len(items),
            start=start,
            succeeded=len(state.prices),
            failed=state.failed,
            completed=completed,
            cursor=cursor,
        )
        return state, report


async def refresh_prices(
    session: MarketSession,
    store: FileStore,
    *,
    started_at: float,
    resolve: ResolveFn = get_all_item_names,
    fetch: FetchFn = fetch_price_history,
    batch_size: int | None = None,
    requests_per_minute: int | None = None,
    max_duration: float | None = None,
    clock: ClockFn = time.monotonic,
    sleep: SleepFn = asyncio.sleep,
) -> RunReport:
    """One full run: resolve, fetch in checkpointed batches, merge and persist.

    Raises `CatalogEmptyError` before touching any state when no listing
    yielded items, and `PriceStoreCorruptError` before fetching anything when
    the existing store is unreadable.
    """
    store.ensure_dirs()
    store.load_prices()

    items = await resolve()
    if not items:
        _log.error("catalog_empty")
        raise CatalogEmptyError("no items loaded from any listing")

    runner = BatchRunner(
        session,
        store,
        started_at=started_at,
        fetch=fetch,
        batch_size=batch_size,
        requests_per_minute=requests_per_minute,
        max_duration=max_duration,
        clock=clock,
        sleep=sleep,
    )
    state, report = await runner.run(items)
    persist_prices(store, state.prices)

    _log.info(
        "run_finished",
        total=report.total,
        succeeded=report.succeeded,
        failed=len(report.failed),
        completed=report.completed,
        cursor=report.cursor,
    )
    if report.failed:
        _log.warning("items_still_failing", count=len(report.failed), items=list(report.failed[:50]))
    return report

from __future__ import annotations

import argparse
import asyncio
import time

from .clients.errors import AuthenticationError
from .clients.session import SteamSession, login_with_retry
from .config import settings
from .db.store import FileStore, PriceStoreCorruptError
from .jobs.refresh import CatalogEmptyError, refresh_prices
from .logging import configure_logging, get_logger, new_run_id


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Fetch Steam market price history and update the local price store"
    )
    ap.add_argument("--batch-size", type=int, default=settings.BATCH_SIZE)
    ap.add_argument(
        "--requests-per-minute",
        type=int,
        default=settings.REQUESTS_PER_MINUTE,
        help="global request ceiling; 0 disables the wait between batches",
    )
    ap.add_argument(
        "--max-duration",
        type=float,
        default=settings.MAX_DURATION,
        help="wall-clock budget in seconds before checkpointing and stopping",
    )
    ap.add_argument("--data-dir", default=settings.DATA_DIR)
    ap.add_argument("--log-level", default=settings.LOG_LEVEL)
    return ap


async def run(args: argparse.Namespace) -> int:
    started_at = time.monotonic()
    log = get_logger()
    store = FileStore(args.data_dir)

    async with SteamSession() as session:
        log.info("steam_login_started")
        try:
            await login_with_retry(session)
        except AuthenticationError as exc:
            log.error("steam_login_failed", error=str(exc))
            return 1

        try:
            await refresh_prices(
                session,
                store,
                started_at=started_at,
                batch_size=args.batch_size,
                requests_per_minute=args.requests_per_minute,
                max_duration=args.max_duration,
            )
        except CatalogEmptyError:
            return 1
        except PriceStoreCorruptError as exc:
            log.error("price_store_corrupt", error=str(exc))
            return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    new_run_id()
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

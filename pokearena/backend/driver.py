"""Periodic driver that runs the matching pass on a fixed cadence."""

from __future__ import annotations

import argparse
import logging
import time

from .battle import cancel_overdue_sessions
from .config import BackendSettings, configure_logging, load_settings
from .matchmaking import run_matching_pass
from .models import MatchingPassResult
from .store import DocumentStore, create_store

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pokearena matchmaking driver")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument("--interval", type=int, default=None, help="seconds between passes")
    return parser.parse_args(argv)


def run_once(store: DocumentStore, settings: BackendSettings) -> MatchingPassResult:
    result = run_matching_pass(
        store,
        max_pairs=settings.match_max_pairs,
        min_wait_seconds=settings.match_min_wait_seconds,
        max_level_gap=settings.match_max_level_gap,
    )
    if settings.enforce_time_limit:
        expired = cancel_overdue_sessions(store)
        if expired:
            logger.info("Cancelled %d overdue sessions", len(expired))
    return result


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    store = create_store(settings.database_url)
    interval = args.interval if args.interval is not None else settings.match_interval_seconds

    if args.once:
        run_once(store, settings)
        return 0

    logger.info("Matchmaking driver started, interval=%ss", interval)
    try:
        while True:
            started = time.monotonic()
            run_once(store, settings)
            time.sleep(max(0.0, interval - (time.monotonic() - started)))
    except KeyboardInterrupt:
        logger.info("Matchmaking driver stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

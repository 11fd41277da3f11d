"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class BackendSettings:
    database_url: str | None
    host: str
    port: int
    log_level: str
    match_interval_seconds: int
    match_min_wait_seconds: int
    match_max_pairs: int
    match_max_level_gap: int
    fraud_window_seconds: int
    fraud_max_captures: int
    enforce_time_limit: bool
    pokeapi_url: str | None


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> BackendSettings:
    return BackendSettings(
        database_url=os.getenv("POKEARENA_DATABASE_URL"),
        host=os.getenv("POKEARENA_HOST", "127.0.0.1"),
        port=int(os.getenv("POKEARENA_PORT", "8000")),
        log_level=os.getenv("POKEARENA_LOG_LEVEL", "INFO").upper(),
        match_interval_seconds=int(os.getenv("POKEARENA_MATCH_INTERVAL_SECONDS", "30")),
        match_min_wait_seconds=int(os.getenv("POKEARENA_MATCH_MIN_WAIT_SECONDS", "30")),
        match_max_pairs=int(os.getenv("POKEARENA_MATCH_MAX_PAIRS", "5")),
        match_max_level_gap=int(os.getenv("POKEARENA_MATCH_MAX_LEVEL_GAP", "10")),
        fraud_window_seconds=int(os.getenv("POKEARENA_FRAUD_WINDOW_SECONDS", "60")),
        fraud_max_captures=int(os.getenv("POKEARENA_FRAUD_MAX_CAPTURES", "10")),
        enforce_time_limit=_env_flag("POKEARENA_ENFORCE_TIME_LIMIT"),
        pokeapi_url=os.getenv("POKEARENA_POKEAPI_URL"),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)

"""Apply SQL schema for local PostgreSQL setup."""

from __future__ import annotations

import logging
from pathlib import Path

from pokearena.backend.config import configure_logging, load_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    if not settings.database_url:
        raise RuntimeError("POKEARENA_DATABASE_URL is required for migration")

    import psycopg

    schema_path = Path(__file__).with_name("db_schema.sql")
    schema_sql = schema_path.read_text(encoding="utf-8")

    with psycopg.connect(settings.database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info("Applied schema from %s", schema_path.name)


if __name__ == "__main__":
    main()

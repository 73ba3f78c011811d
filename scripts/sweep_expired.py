from __future__ import annotations

import argparse
import logging
import os

from song_tasks.engine.sweeper import ExpirySweeper
from song_tasks.storage.postgres import PostgresTaskStore


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete expired song task records once (for cron-style scheduling)."
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=os.getenv("SONG_TASKS_DATABASE_URL", ""),
        help="PostgreSQL connection URL (default: SONG_TASKS_DATABASE_URL).",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    if not args.database_url:
        raise SystemExit("A database URL is required (--database-url or SONG_TASKS_DATABASE_URL).")
    logging.basicConfig(level=logging.INFO)
    store = PostgresTaskStore(args.database_url)
    store.migrate()
    deleted = ExpirySweeper(store, interval_s=0).sweep_once()
    print(f"Deleted {deleted} expired task record(s).")


if __name__ == "__main__":
    main()

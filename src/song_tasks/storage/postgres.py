"""PostgreSQL-backed task store with automatic table migration.

Terms:
- Conditional update: UPDATE guarded by the row's ``version`` so a merge
  computed from a stale read never overwrites a newer write.
- ON CONFLICT: PostgreSQL upsert clause keyed on the primary key.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from song_tasks.errors import StoreError
from song_tasks.storage.models import TaskRecord

_COLUMNS = (
    "id",
    "status",
    "owner_credential",
    "identity_token_ref",
    "title",
    "result_url",
    "provider_stage",
    "metadata_json",
    "created_at",
    "expires_at",
    "updated_at",
    "version",
)


class PostgresTaskStore:
    """Persist task records in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("SONG_TASKS_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS song_tasks (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    owner_credential TEXT NOT NULL,
                    identity_token_ref TEXT,
                    title TEXT,
                    result_url TEXT,
                    provider_stage TEXT,
                    metadata_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    expires_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    CONSTRAINT song_tasks_result_requires_complete
                        CHECK (result_url IS NULL OR status = 'complete')
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_song_tasks_expires_at
                ON song_tasks(expires_at)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_song_tasks_created_at
                ON song_tasks(created_at DESC)
                """)

    def get(self, task_id: str) -> TaskRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM song_tasks WHERE id = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def upsert(self, record: TaskRecord) -> None:
        # DO UPDATE leaves ownership and lifetime columns untouched.
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO song_tasks ({", ".join(_COLUMNS)})
                VALUES ({", ".join(["%s"] * len(_COLUMNS))})
                ON CONFLICT (id) DO UPDATE
                SET status = EXCLUDED.status,
                    title = EXCLUDED.title,
                    result_url = EXCLUDED.result_url,
                    provider_stage = EXCLUDED.provider_stage,
                    metadata_json = EXCLUDED.metadata_json,
                    updated_at = EXCLUDED.updated_at,
                    version = song_tasks.version + 1
                """,
                self._record_params(record),
            )

    def insert_if_absent(self, record: TaskRecord) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO song_tasks ({", ".join(_COLUMNS)})
                VALUES ({", ".join(["%s"] * len(_COLUMNS))})
                ON CONFLICT (id) DO NOTHING
                """,
                self._record_params(record),
            )
            return cursor.rowcount == 1

    def compare_and_set(self, record: TaskRecord, *, expected_version: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE song_tasks
                SET status = %s,
                    owner_credential = %s,
                    identity_token_ref = %s,
                    title = %s,
                    result_url = %s,
                    provider_stage = %s,
                    metadata_json = %s,
                    created_at = %s,
                    expires_at = %s,
                    updated_at = %s,
                    version = %s
                WHERE id = %s AND version = %s
                """,
                (
                    record.status.value,
                    record.owner_credential,
                    record.identity_token_ref,
                    record.title,
                    record.result_url,
                    record.provider_stage,
                    self._json_wrapper(record.metadata),
                    record.created_at,
                    record.expires_at,
                    record.updated_at,
                    record.version,
                    record.id,
                    expected_version,
                ),
            )
            return cursor.rowcount == 1

    def delete(self, task_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM song_tasks WHERE id = %s", (task_id,))
            return cursor.rowcount == 1

    def delete_expired(self, now: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM song_tasks WHERE expires_at < %s", (now,))
            return max(cursor.rowcount, 0)

    def list_recent(self, since: datetime) -> list[TaskRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM song_tasks
                WHERE created_at >= %s
                ORDER BY created_at DESC
                """,
                (since,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """Open a connection, commit on success, and surface driver errors as StoreError."""
        try:
            with self._lock, self._connect() as conn:
                yield conn
                conn.commit()
        except self._psycopg.Error as exc:
            raise StoreError(f"Task store operation failed: {exc}") from exc

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _record_params(self, record: TaskRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.status.value,
            record.owner_credential,
            record.identity_token_ref,
            record.title,
            record.result_url,
            record.provider_stage,
            self._json_wrapper(record.metadata),
            record.created_at,
            record.expires_at,
            record.updated_at,
            record.version,
        )

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json_object(raw: Any) -> dict[str, Any]:
        if raw is None:
            return {}
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if isinstance(parsed, dict):
            return parsed
        return {}

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_record(cls, row: Any) -> TaskRecord:
        return TaskRecord(
            id=str(row["id"]),
            status=row["status"],
            owner_credential=row["owner_credential"],
            identity_token_ref=row["identity_token_ref"],
            title=row["title"],
            result_url=row["result_url"],
            provider_stage=row["provider_stage"],
            metadata=cls._parse_json_object(row["metadata_json"]),
            created_at=cls._parse_datetime(row["created_at"]),
            expires_at=cls._parse_datetime(row["expires_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
            version=int(row["version"]),
        )

"""In-memory storage backend for tests only."""

from __future__ import annotations

import threading
from datetime import datetime

from song_tasks.storage.models import TaskRecord

_IMMUTABLE_FIELDS = ("owner_credential", "identity_token_ref", "created_at", "expires_at")


class InMemoryTaskStore:
    """Process-local implementation matching PostgresTaskStore semantics."""

    def __init__(self) -> None:
        self._records: dict[str, TaskRecord] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def get(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            record = self._records.get(task_id)
        return record.model_copy(deep=True) if record else None

    def upsert(self, record: TaskRecord) -> None:
        with self._lock:
            current = self._records.get(record.id)
            if current is None:
                self._records[record.id] = record.model_copy(deep=True)
                return
            kept = {name: getattr(current, name) for name in _IMMUTABLE_FIELDS}
            kept["version"] = current.version + 1
            self._records[record.id] = record.model_copy(update=kept, deep=True)

    def insert_if_absent(self, record: TaskRecord) -> bool:
        with self._lock:
            if record.id in self._records:
                return False
            self._records[record.id] = record.model_copy(deep=True)
            return True

    def compare_and_set(self, record: TaskRecord, *, expected_version: int) -> bool:
        with self._lock:
            current = self._records.get(record.id)
            if current is None or current.version != expected_version:
                return False
            self._records[record.id] = record.model_copy(deep=True)
            return True

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._records.pop(task_id, None) is not None

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, item in self._records.items() if item.expires_at < now]
            for key in expired:
                del self._records[key]
        return len(expired)

    def list_recent(self, since: datetime) -> list[TaskRecord]:
        with self._lock:
            items = [item for item in self._records.values() if item.created_at >= since]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return [item.model_copy(deep=True) for item in items]

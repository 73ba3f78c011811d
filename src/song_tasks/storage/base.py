"""Storage interface for task records."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from song_tasks.storage.models import TaskRecord


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def get(self, task_id: str) -> TaskRecord | None: ...

    def upsert(self, record: TaskRecord) -> None:
        """Insert, or replace mutable fields of an existing row.

        Ownership fields, ``created_at`` and ``expires_at`` of an existing row
        are never replaced.
        """
        ...

    def insert_if_absent(self, record: TaskRecord) -> bool: ...

    def compare_and_set(self, record: TaskRecord, *, expected_version: int) -> bool:
        """Write ``record`` only if the stored row still has ``expected_version``."""
        ...

    def delete(self, task_id: str) -> bool: ...

    def delete_expired(self, now: datetime) -> int: ...

    def list_recent(self, since: datetime) -> list[TaskRecord]: ...

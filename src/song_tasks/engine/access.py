"""Ownership-checked reads of task records."""

from __future__ import annotations

import logging
from datetime import timedelta

from song_tasks.engine.clock import Clock, utc_now
from song_tasks.engine.ownership import credential_matches
from song_tasks.errors import TaskNotFoundError
from song_tasks.storage.base import TaskStore
from song_tasks.storage.models import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


class OwnedTaskReader:
    def __init__(self, store: TaskStore, *, task_ttl: timedelta, clock: Clock = utc_now) -> None:
        self.store = store
        self.task_ttl = task_ttl
        self._clock = clock

    def read(self, task_id: str, identity_token: str | None) -> TaskRecord:
        """Return the record only to its owner; every other outcome is TaskNotFoundError."""
        record = self.store.get(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)

        if record.is_expired(self._clock()):
            logger.info("read event=expired task_id=%s", task_id)
            self.store.delete(task_id)
            raise TaskNotFoundError(task_id)

        if not credential_matches(identity_token, task_id, record.owner_credential):
            logger.info("read event=denied task_id=%s", task_id)
            raise TaskNotFoundError(task_id)
        return record

    def list_owned_recent(self, identity_token: str | None) -> list[TaskRecord]:
        """Completed, unexpired records owned by the caller, newest first."""
        if not identity_token:
            return []
        now = self._clock()
        records = self.store.list_recent(now - self.task_ttl)
        return [
            record
            for record in records
            if record.status is TaskStatus.COMPLETE
            and record.result_url
            and not record.is_expired(now)
            and credential_matches(identity_token, record.id, record.owner_credential)
        ]

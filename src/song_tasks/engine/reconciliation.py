"""Reconciliation of asynchronous provider callbacks into task records.

Rules applied on every merge:
- Ownership fields, ``created_at`` and ``expires_at`` come from the stored
  record, never from the callback.
- Status only moves forward (see ``STATUS_RANK``); a callback without a
  result never clears or replaces a stored result.
- A callback whose fingerprint is already in the history is a duplicate
  delivery and changes nothing.
- Writes are conditional on the version that was read, so two concurrent
  callbacks cannot overwrite each other's merge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from song_tasks.engine.callbacks import InboundCallback, parse_callback
from song_tasks.engine.clock import Clock, utc_now
from song_tasks.engine.ownership import is_orphan_credential, orphan_credential
from song_tasks.errors import StoreError
from song_tasks.storage.base import TaskStore
from song_tasks.storage.models import STATUS_RANK, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    record: TaskRecord
    created: bool = False
    changed: bool = True

    @property
    def orphaned(self) -> bool:
        return is_orphan_credential(self.record.owner_credential)


def advance_status(current: TaskStatus, proposed: TaskStatus) -> TaskStatus:
    if STATUS_RANK[proposed] > STATUS_RANK[current]:
        return proposed
    return current


def merge_callback(
    existing: TaskRecord,
    callback: InboundCallback,
    *,
    now: datetime,
) -> TaskRecord | None:
    """Return the merged record, or None when the callback changes nothing."""
    if callback.fingerprint in existing.callback_fingerprints():
        return None

    proposed = callback.proposed_status()
    if proposed is TaskStatus.GENERATING and is_orphan_credential(existing.owner_credential):
        proposed = TaskStatus.ORPHANED
    status = advance_status(existing.status, proposed)

    result_url = existing.result_url
    if callback.result_url:
        result_url = callback.result_url
        status = TaskStatus.COMPLETE

    provider_stage = existing.provider_stage
    if STATUS_RANK[proposed] >= STATUS_RANK[existing.status]:
        provider_stage = callback.callback_type

    return existing.model_copy(
        update={
            "status": status,
            "result_url": result_url,
            "title": existing.title or callback.result_title,
            "provider_stage": provider_stage,
            "metadata": _with_callback(existing.metadata, callback, now=now),
            "updated_at": now,
            "version": existing.version + 1,
        },
        deep=True,
    )


def build_orphan_record(callback: InboundCallback, *, now: datetime, ttl: timedelta) -> TaskRecord:
    """Record for a callback with no submission on file; readable by no client."""
    status = callback.proposed_status()
    if status is TaskStatus.GENERATING:
        status = TaskStatus.ORPHANED
    return TaskRecord(
        id=callback.task_id,
        status=status,
        owner_credential=orphan_credential(callback.task_id),
        identity_token_ref=None,
        title=callback.result_title,
        result_url=callback.result_url,
        provider_stage=callback.callback_type,
        metadata=_with_callback({"orphaned": True}, callback, now=now),
        created_at=now,
        expires_at=now + ttl,
        updated_at=now,
        version=0,
    )


class ReconciliationEngine:
    """Merge inbound callbacks into the task store."""

    def __init__(
        self,
        store: TaskStore,
        *,
        task_ttl: timedelta,
        max_attempts: int = 5,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.task_ttl = task_ttl
        self.max_attempts = max(1, max_attempts)
        self._clock = clock

    def apply_callback(self, raw_payload: Any) -> ReconcileOutcome:
        callback = parse_callback(raw_payload)
        now = self._clock()
        logger.info(
            "callback event=received task_id=%s callback_type=%s code=%s has_result=%s",
            callback.task_id,
            callback.callback_type,
            callback.code,
            bool(callback.result_url),
        )

        for attempt in range(1, self.max_attempts + 1):
            existing = self.store.get(callback.task_id)
            if existing is None:
                orphan = build_orphan_record(callback, now=now, ttl=self.task_ttl)
                if self.store.insert_if_absent(orphan):
                    logger.warning(
                        "callback event=orphan_created task_id=%s status=%s",
                        callback.task_id,
                        orphan.status.value,
                    )
                    return ReconcileOutcome(record=orphan, created=True)
                # Lost the insert race; merge into whatever won it.
                continue

            merged = merge_callback(existing, callback, now=now)
            if merged is None:
                logger.info("callback event=duplicate task_id=%s", callback.task_id)
                return ReconcileOutcome(record=existing, changed=False)
            if self.store.compare_and_set(merged, expected_version=existing.version):
                logger.info(
                    "callback event=merged task_id=%s status=%s->%s has_result=%s",
                    callback.task_id,
                    existing.status.value,
                    merged.status.value,
                    merged.result_url is not None,
                )
                return ReconcileOutcome(record=merged)
            logger.warning(
                "callback event=write_conflict task_id=%s attempt=%d/%d",
                callback.task_id,
                attempt,
                self.max_attempts,
            )

        raise StoreError(
            f"Could not merge callback for task {callback.task_id} "
            f"after {self.max_attempts} attempts"
        )


def _with_callback(
    metadata: dict[str, Any],
    callback: InboundCallback,
    *,
    now: datetime,
) -> dict[str, Any]:
    received_at = now.isoformat()
    history = [entry for entry in metadata.get("callbacks", []) if isinstance(entry, dict)]
    history.append(callback.history_entry(received_at))
    return {
        **metadata,
        "callbacks": history,
        "last_callback": received_at,
        "callback_type": callback.callback_type,
        "callback_code": callback.code,
        "callback_message": callback.message,
    }

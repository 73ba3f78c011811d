"""Submission of generation jobs with ownership recorded up front.

Flow:
1. Write a provisional record (status=submitted) keyed by a local id.
2. Call the provider.
3a. On failure, move the provisional record to failed and re-raise.
3b. On success, move the record to the provider's task id, binding the
    credential to that id from the stored identity token, then drop the
    provisional row. If a callback raced ahead and left an orphan under the
    provider id, this submission adopts it: ownership comes from the
    submission, status/result/history from the orphan.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from song_tasks.engine.clock import Clock, utc_now
from song_tasks.engine.ownership import credential_prefix, derive_credential, is_orphan_credential
from song_tasks.engine.reconciliation import advance_status
from song_tasks.errors import InvalidSubmissionError, ProviderError, StoreError
from song_tasks.provider.client import DEFAULT_TITLE, GenerationProvider, ProviderSubmission
from song_tasks.storage.base import TaskStore
from song_tasks.storage.models import TERMINAL_STATUSES, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

PROVISIONAL_ID_PREFIX = "pending-"


class SubmissionCoordinator:
    def __init__(
        self,
        store: TaskStore,
        provider: GenerationProvider,
        *,
        task_ttl: timedelta,
        max_attempts: int = 5,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.task_ttl = task_ttl
        self.max_attempts = max(1, max_attempts)
        self._clock = clock

    def submit(
        self, identity_token: str, song_data: Mapping[str, Any] | None
    ) -> TaskRecord:
        """Create the owned record, call the provider, and return the final record."""
        if not identity_token:
            raise InvalidSubmissionError("identity token is required")
        if song_data is None:
            raise InvalidSubmissionError("Song data is required")

        provisional = self._create_provisional(identity_token, song_data)
        try:
            submission = self.provider.submit(song_data)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "submission event=provider_failed task_id=%s reason=%s",
                provisional.id,
                exc,
            )
            self._mark_failed(provisional.id, reason=str(exc))
            raise ProviderError(str(exc), task_id=provisional.id) from exc

        if submission.task_id == provisional.id:
            return provisional
        return self._rekey(provisional, submission)

    def _create_provisional(self, identity_token: str, song_data: Mapping[str, Any]) -> TaskRecord:
        now = self._clock()
        task_id = f"{PROVISIONAL_ID_PREFIX}{uuid.uuid4().hex}"
        record = TaskRecord(
            id=task_id,
            status=TaskStatus.SUBMITTED,
            owner_credential=derive_credential(identity_token, task_id),
            identity_token_ref=identity_token,
            title=song_data.get("title") or DEFAULT_TITLE,
            metadata={
                "song_data": dict(song_data),
                "submitted_at": now.isoformat(),
                "provisional_id": task_id,
            },
            created_at=now,
            expires_at=now + self.task_ttl,
            updated_at=now,
        )
        self.store.upsert(record)
        logger.info(
            "submission event=recorded task_id=%s owner=%s",
            task_id,
            credential_prefix(record.owner_credential),
        )
        return record

    def _rekey(self, provisional: TaskRecord, submission: ProviderSubmission) -> TaskRecord:
        provider_id = submission.task_id
        # The record was written by this coordinator, so the token is always present.
        identity_token = provisional.identity_token_ref or ""
        credential = derive_credential(identity_token, provider_id)
        metadata = {**provisional.metadata, "provider_response": submission.raw}

        for attempt in range(1, self.max_attempts + 1):
            now = self._clock()
            existing = self.store.get(provider_id)
            if existing is None:
                owned = provisional.model_copy(
                    update={
                        "id": provider_id,
                        "status": TaskStatus.GENERATING,
                        "owner_credential": credential,
                        "metadata": metadata,
                        "updated_at": now,
                        "version": 0,
                    },
                    deep=True,
                )
                if self.store.insert_if_absent(owned):
                    break
                continue

            if not is_orphan_credential(existing.owner_credential):
                self._mark_failed(provisional.id, reason="provider task id already owned")
                raise ProviderError(
                    f"Provider returned task id {provider_id} that is already owned",
                    task_id=provisional.id,
                )

            owned = existing.model_copy(
                update={
                    "status": advance_status(existing.status, TaskStatus.GENERATING),
                    "owner_credential": credential,
                    "identity_token_ref": identity_token,
                    "title": provisional.title or existing.title,
                    "metadata": {
                        **metadata,
                        "callbacks": existing.metadata.get("callbacks", []),
                        "adopted_orphan_at": now.isoformat(),
                    },
                    "created_at": provisional.created_at,
                    "expires_at": provisional.expires_at,
                    "updated_at": now,
                    "version": existing.version + 1,
                },
                deep=True,
            )
            if self.store.compare_and_set(owned, expected_version=existing.version):
                logger.warning(
                    "submission event=orphan_adopted task_id=%s status=%s",
                    provider_id,
                    owned.status.value,
                )
                break
            logger.warning(
                "submission event=write_conflict task_id=%s attempt=%d/%d",
                provider_id,
                attempt,
                self.max_attempts,
            )
        else:
            raise StoreError(f"Could not record provider task {provider_id}")

        self.store.delete(provisional.id)
        logger.info(
            "submission event=rekeyed provisional_id=%s task_id=%s owner=%s",
            provisional.id,
            provider_id,
            credential_prefix(owned.owner_credential),
        )
        return owned

    def _mark_failed(self, task_id: str, *, reason: str) -> None:
        for _ in range(self.max_attempts):
            current = self.store.get(task_id)
            if current is None or current.status in TERMINAL_STATUSES:
                return
            now = self._clock()
            failed = current.model_copy(
                update={
                    "status": TaskStatus.FAILED,
                    "metadata": {
                        **current.metadata,
                        "failure": {"reason": reason, "failed_at": now.isoformat()},
                    },
                    "updated_at": now,
                    "version": current.version + 1,
                },
                deep=True,
            )
            if self.store.compare_and_set(failed, expected_version=current.version):
                return
        raise StoreError(f"Could not mark task {task_id} as failed")

"""Task record models shared by the engine, the API and store backends.

Terms used in this file:
- Task record: one row per generation job, keyed by the provider task id.
- Owner credential: hash binding an identity token to a task id.
- Version: optimistic concurrency counter bumped on every engine write.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    SUBMITTED = "submitted"
    ORPHANED = "orphaned"
    GENERATING = "generating"
    FAILED = "failed"
    COMPLETE = "complete"


# Status may only move up this ranking. failed and complete are terminal,
# except that a delivered result always lands on complete.
STATUS_RANK: dict[TaskStatus, int] = {
    TaskStatus.SUBMITTED: 0,
    TaskStatus.ORPHANED: 0,
    TaskStatus.GENERATING: 1,
    TaskStatus.FAILED: 2,
    TaskStatus.COMPLETE: 3,
}

TERMINAL_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.COMPLETE})


class TaskRecord(BaseModel):
    """Persisted task record."""

    id: str
    status: TaskStatus
    # Set once at creation; never taken from a callback.
    owner_credential: str
    identity_token_ref: str | None = None
    title: str | None = None
    result_url: str | None = None
    # Last callback type reported by the provider ("text", "first", ...).
    provider_stage: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime
    updated_at: datetime
    version: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def callback_fingerprints(self) -> set[str]:
        history = self.metadata.get("callbacks", [])
        return {
            entry["fingerprint"]
            for entry in history
            if isinstance(entry, dict) and isinstance(entry.get("fingerprint"), str)
        }


class TaskView(BaseModel):
    """Task shape returned to the owning client (no ownership material)."""

    id: str
    status: TaskStatus
    title: str | None = None
    result_url: str | None = None
    provider_stage: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: TaskRecord) -> TaskView:
        payload = record.model_dump(exclude={"owner_credential", "identity_token_ref", "version"})
        return cls.model_validate(payload)

"""Error taxonomy for task ownership and reconciliation."""

from __future__ import annotations


class SongTaskError(Exception):
    """Base class for engine errors."""


class MalformedCallbackError(SongTaskError):
    """Callback payload is missing its task identifier or is not an object."""


class InvalidSubmissionError(SongTaskError):
    """Submission is missing generation parameters or an identity token."""


class TaskNotFoundError(SongTaskError):
    """Task is missing, expired, or not owned by the caller.

    The three cases share one message so a non-owner cannot learn whether a
    task exists.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__("Task not found")
        self.task_id = task_id


class StoreError(SongTaskError):
    """Task store failed or a conditional update kept losing races."""


class ProviderError(SongTaskError):
    """Generation provider rejected or failed the submission."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id

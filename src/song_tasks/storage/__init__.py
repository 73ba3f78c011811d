"""Task record store backends and models."""

from song_tasks.storage.base import TaskStore
from song_tasks.storage.memory import InMemoryTaskStore
from song_tasks.storage.models import TaskRecord, TaskStatus, TaskView
from song_tasks.storage.postgres import PostgresTaskStore

__all__ = [
    "InMemoryTaskStore",
    "PostgresTaskStore",
    "TaskRecord",
    "TaskStatus",
    "TaskStore",
    "TaskView",
]

"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from song_tasks.storage.models import TaskStatus, TaskView


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    song_data: dict[str, Any] = Field(alias="songData")


class GenerateResponse(BaseModel):
    success: bool = True
    task_id: str = Field(serialization_alias="taskId")
    status: TaskStatus
    message: str = "Song generation in progress"


class CallbackResponse(BaseModel):
    # Same shape whether or not the task exists.
    success: bool = True
    task_id: str = Field(serialization_alias="taskId")


class RecentTasksResponse(BaseModel):
    success: bool = True
    tasks: list[TaskView] = Field(default_factory=list)
    count: int = 0

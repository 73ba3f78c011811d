"""Parsing of provider completion callbacks.

Callback body shape::

    {"code": 200, "msg": "...", "data": {"task_id": "...", "callbackType": "first",
                                         "data": [{"audio_url": "...", "title": "..."}]}}
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from song_tasks.errors import MalformedCallbackError
from song_tasks.storage.models import TaskStatus

FAILURE_CALLBACK_TYPES = frozenset({"error", "failed", "fail"})
UNKNOWN_CALLBACK_TYPE = "unknown"


class CallbackTrack(BaseModel):
    model_config = ConfigDict(extra="allow")

    audio_url: str | None = None
    title: str | None = None


class CallbackData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    task_id: str | int | None = None
    callback_type: str | None = Field(default=None, alias="callbackType")
    data: list[CallbackTrack] | None = None


class CallbackPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: int | str | None = None
    msg: str | None = None
    data: CallbackData | None = None


@dataclass(frozen=True)
class InboundCallback:
    """A validated callback reduced to the fields reconciliation acts on."""

    task_id: str
    callback_type: str
    code: int | str | None
    message: str | None
    result_url: str | None
    result_title: str | None
    data: dict[str, Any]
    fingerprint: str

    def proposed_status(self) -> TaskStatus:
        # A delivered result is definitive whatever the type field says.
        if self.result_url:
            return TaskStatus.COMPLETE
        if self.callback_type == "complete":
            return TaskStatus.COMPLETE
        if self.callback_type in FAILURE_CALLBACK_TYPES:
            return TaskStatus.FAILED
        if isinstance(self.code, int) and self.code >= 400:
            return TaskStatus.FAILED
        return TaskStatus.GENERATING

    def history_entry(self, received_at: str) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "received_at": received_at,
            "callback_type": self.callback_type,
            "code": self.code,
            "msg": self.message,
            "data": self.data,
        }


def parse_callback(raw: Any) -> InboundCallback:
    """Validate a raw callback body; raise MalformedCallbackError if unusable."""
    if not isinstance(raw, dict):
        raise MalformedCallbackError("Callback body must be a JSON object")
    try:
        payload = CallbackPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedCallbackError(
            f"Invalid callback payload: {exc.error_count()} error(s)"
        ) from exc

    if payload.data is None or payload.data.task_id is None:
        raise MalformedCallbackError("task_id is required")
    task_id = str(payload.data.task_id).strip()
    if not task_id:
        raise MalformedCallbackError("task_id is required")

    result_url: str | None = None
    result_title: str | None = None
    # First track with a non-empty audio URL wins.
    for track in payload.data.data or []:
        if track.audio_url and track.audio_url.strip():
            result_url = track.audio_url.strip()
            result_title = track.title or None
            break
    if result_title is None:
        result_title = next((track.title for track in payload.data.data or [] if track.title), None)

    callback_type = (payload.data.callback_type or UNKNOWN_CALLBACK_TYPE).strip().lower()
    return InboundCallback(
        task_id=task_id,
        callback_type=callback_type or UNKNOWN_CALLBACK_TYPE,
        code=payload.code,
        message=payload.msg,
        result_url=result_url,
        result_title=result_title,
        data=raw.get("data") if isinstance(raw.get("data"), dict) else {},
        fingerprint=_fingerprint(raw),
    )


def _fingerprint(raw: dict[str, Any]) -> str:
    canonical = json.dumps(raw, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

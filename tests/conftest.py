from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from song_tasks.api.main import create_app
from song_tasks.config.settings import Settings
from song_tasks.provider.client import ProviderSubmission
from song_tasks.storage.memory import InMemoryTaskStore

TASK_TTL = timedelta(hours=48)


class FakeClock:
    """Manually advanced clock shared by the engine components under test."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider:
    """Generation provider double that records submissions."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.next_task_ids: list[str] = []
        self.error: Exception | None = None
        self.before_return: Callable[[str], None] | None = None

    def submit(self, song_data: Mapping[str, Any]) -> ProviderSubmission:
        self.calls.append(dict(song_data))
        if self.error is not None:
            raise self.error
        if self.next_task_ids:
            task_id = self.next_task_ids.pop(0)
        else:
            task_id = f"suno-task-{len(self.calls)}"
        if self.before_return is not None:
            self.before_return(task_id)
        return ProviderSubmission(task_id=task_id, raw={"code": 200, "data": {"taskId": task_id}})


def callback_payload(
    task_id: str | None,
    *,
    callback_type: str = "text",
    audio_url: str | None = None,
    title: str | None = None,
    code: int = 200,
) -> dict[str, Any]:
    track: dict[str, Any] = {"id": "track-1"}
    if audio_url is not None:
        track["audio_url"] = audio_url
    if title is not None:
        track["title"] = title
    data: dict[str, Any] = {"callbackType": callback_type, "data": [track]}
    if task_id is not None:
        data["task_id"] = task_id
    return {"code": code, "msg": "All generated successfully.", "data": data}


@pytest.fixture
def make_callback() -> Callable[..., dict[str, Any]]:
    return callback_payload


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="",
        sweeper_enabled=False,
        identity_cookie_secure=False,
        task_ttl_hours=48,
    )


@pytest.fixture
def app(
    store: InMemoryTaskStore,
    provider: FakeProvider,
    settings: Settings,
    clock: FakeClock,
) -> FastAPI:
    return create_app(store=store, provider=provider, settings_override=settings, clock=clock)


@pytest.fixture
def client_for(app: FastAPI) -> Iterator[Callable[[str | None], TestClient]]:
    clients: list[TestClient] = []

    def _build(identity_token: str | None) -> TestClient:
        cookies = {"sessionId": identity_token} if identity_token else None
        test_client = TestClient(app, cookies=cookies)
        clients.append(test_client)
        return test_client

    yield _build
    for test_client in clients:
        test_client.close()

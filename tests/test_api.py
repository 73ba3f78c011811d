from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from song_tasks.api.main import create_app
from song_tasks.config.settings import Settings
from song_tasks.engine.ownership import derive_credential
from song_tasks.errors import ProviderError, StoreError
from song_tasks.storage.memory import InMemoryTaskStore

SONG = {"title": "Ocean Song", "prompt": "calm waves at night"}
AUDIO_URL = "https://cdn.example/songs/ocean.mp3"
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def test_health_endpoint(client_for) -> None:
    response = client_for(None).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "song-tasks"}


def test_identity_cookie_is_issued_once(client_for) -> None:
    client = client_for(None)

    first = client.get("/health")
    cookie_header = first.headers["set-cookie"]
    assert cookie_header.startswith("sessionId=")
    assert "HttpOnly" in cookie_header
    assert "samesite=strict" in cookie_header.lower()
    assert "Max-Age=172800" in cookie_header

    second = client.get("/health")
    assert "set-cookie" not in second.headers


def test_submit_callback_read_scenario(client_for, store, provider, make_callback) -> None:
    owner = client_for("abc")
    stranger = client_for("xyz")
    provider.next_task_ids = ["suno-123"]

    created = owner.post("/generate", json={"songData": SONG})
    assert created.status_code == 200
    assert created.json()["taskId"] == "suno-123"
    assert created.json()["status"] == "generating"
    credential = store.get("suno-123").owner_credential
    assert credential == derive_credential("abc", "suno-123")

    progress = owner.post("/callback", json=make_callback("suno-123", callback_type="text"))
    assert progress.status_code == 200
    assert progress.json() == {"success": True, "taskId": "suno-123"}
    record = store.get("suno-123")
    assert record.status == "generating"
    assert record.provider_stage == "text"
    assert record.owner_credential == credential

    done = owner.post(
        "/callback",
        json=make_callback("suno-123", callback_type="complete", audio_url=AUDIO_URL),
    )
    assert done.status_code == 200

    fetched = owner.get("/tasks/suno-123")
    assert fetched.status_code == 200
    body = fetched.json()
    assert body["status"] == "complete"
    assert body["result_url"] == AUDIO_URL
    assert "owner_credential" not in body
    assert "identity_token_ref" not in body

    denied = stranger.get("/tasks/suno-123")
    missing = stranger.get("/tasks/suno-does-not-exist")
    assert denied.status_code == missing.status_code == 404
    assert denied.json() == missing.json() == {"detail": "Task not found"}

    listed = owner.get("/tasks").json()
    assert listed["count"] == 1
    assert listed["tasks"][0]["id"] == "suno-123"
    assert stranger.get("/tasks").json()["count"] == 0


def test_repeated_callback_changes_nothing(client_for, store, provider, make_callback) -> None:
    client = client_for("abc")
    provider.next_task_ids = ["suno-1"]
    client.post("/generate", json={"songData": SONG})
    payload = make_callback("suno-1", callback_type="complete", audio_url=AUDIO_URL)

    first = client.post("/callback", json=payload)
    after_first = store.get("suno-1")
    second = client.post("/callback", json=payload)

    assert first.json() == second.json() == {"success": True, "taskId": "suno-1"}
    assert store.get("suno-1") == after_first
    assert after_first.status == "complete"


def test_callback_for_unknown_task_creates_orphan(client_for, store, make_callback) -> None:
    response = client_for(None).post(
        "/callback",
        json=make_callback("ghost-7", callback_type="complete", audio_url=AUDIO_URL),
    )

    assert response.status_code == 200
    assert store.get("ghost-7").status == "complete"
    for token in ("abc", "xyz"):
        assert client_for(token).get("/tasks/ghost-7").status_code == 404


def test_callback_reply_does_not_reveal_task_existence(client_for, provider) -> None:
    client_for("abc").post("/generate", json={"songData": SONG})
    provider_id = "suno-task-1"
    stranger = client_for("xyz")

    def reply(task_id: str) -> tuple[int, dict]:
        body = {"code": 200, "data": {"task_id": task_id, "callbackType": "text"}}
        response = stranger.post("/callback", json=body)
        return response.status_code, response.json()

    known_status, known_body = reply(provider_id)
    unknown_status, unknown_body = reply("no-such-task")

    assert known_status == unknown_status == 200
    assert set(known_body) == set(unknown_body) == {"success", "taskId"}
    assert known_body["taskId"] == provider_id
    assert unknown_body["taskId"] == "no-such-task"


def test_callback_with_invalid_json_is_rejected(client_for, store) -> None:
    response = client_for(None).post(
        "/callback",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Callback body must be valid JSON"}
    assert store.list_recent(since=EPOCH) == []


@pytest.mark.parametrize(
    "body",
    [
        {"code": 200, "msg": "ok", "data": {"callbackType": "complete"}},
        {"code": 200, "msg": "ok"},
        ["not", "an", "object"],
    ],
)
def test_callback_without_task_id_is_rejected(client_for, store, body) -> None:
    response = client_for(None).post("/callback", json=body)

    assert response.status_code == 400
    assert store.list_recent(since=EPOCH) == []


def test_generate_requires_song_data(client_for, provider) -> None:
    client = client_for("abc")

    assert client.post("/generate", json={}).status_code == 422
    assert provider.calls == []

    blank = client.post("/generate", json={"songData": {}})
    assert blank.status_code == 200
    assert provider.calls == [{}]


def test_provider_failure_returns_502_with_pollable_task(client_for, provider) -> None:
    client = client_for("abc")
    provider.error = ProviderError("Provider API error: 500 - boom")

    response = client.post("/generate", json={"songData": SONG})

    assert response.status_code == 502
    task_id = response.json()["task_id"]
    polled = client.get(f"/tasks/{task_id}")
    assert polled.status_code == 200
    assert polled.json()["status"] == "failed"


def test_expired_task_reads_as_not_found(client_for, store, provider, clock) -> None:
    client = client_for("abc")
    provider.next_task_ids = ["suno-old"]
    client.post("/generate", json={"songData": SONG})
    clock.advance(hours=49)

    assert client.get("/tasks/suno-old").status_code == 404
    assert store.get("suno-old") is None


class _BrokenStore(InMemoryTaskStore):
    def get(self, task_id: str):
        raise StoreError("connection refused")


def test_store_failure_surfaces_as_500(provider, settings, clock, make_callback) -> None:
    app = create_app(
        store=_BrokenStore(), provider=provider, settings_override=settings, clock=clock
    )
    client = TestClient(app)

    response = client.post("/callback", json=make_callback("suno-1"))

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal Server Error"}


def test_startup_requires_database_url_without_injected_store() -> None:
    app = create_app(settings_override=Settings(database_url="", sweeper_enabled=False))

    with pytest.raises(RuntimeError, match="SONG_TASKS_DATABASE_URL"):
        with TestClient(app):
            pass

"""FastAPI app entrypoint for song-tasks.

Routes:
- POST /generate: record an owned task and submit it to the provider.
- POST /callback: provider completion callbacks (any order, any number of times).
- GET /tasks/{task_id}: owner-only read; anything else is a 404.
- GET /tasks: the caller's recent completed tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import Body, FastAPI, Request

from song_tasks.api.errors import register_exception_handlers
from song_tasks.api.identity import identity_token_from, install_identity_middleware
from song_tasks.api.schemas import (
    CallbackResponse,
    GenerateRequest,
    GenerateResponse,
    RecentTasksResponse,
)
from song_tasks.config.settings import Settings, get_settings
from song_tasks.engine.access import OwnedTaskReader
from song_tasks.engine.clock import Clock, utc_now
from song_tasks.engine.reconciliation import ReconciliationEngine
from song_tasks.engine.submission import SubmissionCoordinator
from song_tasks.engine.sweeper import ExpirySweeper
from song_tasks.provider.client import GenerationProvider, build_provider_client
from song_tasks.storage.base import TaskStore
from song_tasks.storage.models import TaskView
from song_tasks.storage.postgres import PostgresTaskStore


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    store_override: TaskStore | None,
    provider_override: GenerationProvider | None,
    clock: Clock,
) -> None:
    if not hasattr(app.state, "store"):
        if store_override is None and not settings.database_url:
            raise RuntimeError(
                "Missing database URL. Set SONG_TASKS_DATABASE_URL before starting the app."
            )
        app.state.store = store_override or PostgresTaskStore(settings.database_url)
        app.state.store.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "submission"):
        task_ttl = timedelta(hours=settings.task_ttl_hours)
        store = app.state.store
        provider = provider_override or build_provider_client(settings)
        app.state.submission = SubmissionCoordinator(
            store,
            provider,
            task_ttl=task_ttl,
            max_attempts=settings.reconcile_max_attempts,
            clock=clock,
        )
        app.state.reconciler = ReconciliationEngine(
            store,
            task_ttl=task_ttl,
            max_attempts=settings.reconcile_max_attempts,
            clock=clock,
        )
        app.state.reader = OwnedTaskReader(store, task_ttl=task_ttl, clock=clock)
        app.state.sweeper = ExpirySweeper(
            store,
            interval_s=settings.sweep_interval_s,
            clock=clock,
        )


def create_app(
    *,
    store: TaskStore | None = None,
    provider: GenerationProvider | None = None,
    settings_override: Settings | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    settings = settings_override or get_settings()

    def _ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            store_override=store,
            provider_override=provider,
            clock=clock,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        sweeper_task: asyncio.Task[None] | None = None
        if settings.sweeper_enabled:
            sweeper_task = asyncio.create_task(app.state.sweeper.run_forever())
        try:
            yield
        finally:
            if sweeper_task is not None:
                sweeper_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper_task

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    install_identity_middleware(app, settings)
    register_exception_handlers(app)

    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        _ensure(app)

    def _state(request: Request) -> Any:
        if not hasattr(request.app.state, "submission"):
            _ensure(request.app)
        return request.app.state

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/generate", response_model=GenerateResponse)
    def generate(payload: GenerateRequest, request: Request) -> GenerateResponse:
        state = _state(request)
        record = state.submission.submit(identity_token_from(request) or "", payload.song_data)
        return GenerateResponse(task_id=record.id, status=record.status)

    @app.post("/callback", response_model=CallbackResponse)
    def callback(request: Request, payload: Any = Body(default=None)) -> CallbackResponse:
        state = _state(request)
        outcome = state.reconciler.apply_callback(payload)
        return CallbackResponse(task_id=outcome.record.id)

    @app.get("/tasks", response_model=RecentTasksResponse)
    def recent_tasks(request: Request) -> RecentTasksResponse:
        state = _state(request)
        records = state.reader.list_owned_recent(identity_token_from(request))
        tasks = [TaskView.from_record(record) for record in records]
        return RecentTasksResponse(tasks=tasks, count=len(tasks))

    @app.get("/tasks/{task_id}", response_model=TaskView)
    def get_task(task_id: str, request: Request) -> TaskView:
        state = _state(request)
        record = state.reader.read(task_id, identity_token_from(request))
        return TaskView.from_record(record)

    return app


app = create_app()

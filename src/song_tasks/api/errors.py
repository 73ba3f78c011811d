import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from song_tasks.errors import (
    InvalidSubmissionError,
    MalformedCallbackError,
    ProviderError,
    StoreError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MalformedCallbackError)
    async def malformed_callback_handler(request: Request, exc: MalformedCallbackError):
        logger.warning("callback event=rejected reason=%s", exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Unparseable callback bodies are malformed callbacks, not schema errors.
        if request.url.path == "/callback":
            logger.warning("callback event=rejected reason=invalid_json")
            return JSONResponse(
                status_code=400, content={"detail": "Callback body must be valid JSON"}
            )
        return await request_validation_exception_handler(request, exc)

    @app.exception_handler(InvalidSubmissionError)
    async def invalid_submission_handler(request: Request, exc: InvalidSubmissionError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(TaskNotFoundError)
    async def task_not_found_handler(request: Request, exc: TaskNotFoundError):
        # Same body for missing, expired and foreign tasks.
        return JSONResponse(status_code=404, content={"detail": "Task not found"})

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        return JSONResponse(
            status_code=502,
            content={
                "detail": "Song generation failed",
                "error": str(exc),
                "task_id": exc.task_id,
            },
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error("store event=failed path=%s reason=%s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

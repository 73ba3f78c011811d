"""Client for the third-party asynchronous generation API.

The provider accepts a generation request, answers right away with its own
task id, and reports progress later by POSTing to our callback URL.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error, request

from song_tasks.config.settings import Settings
from song_tasks.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "My Song"
DEFAULT_PROMPT = "Generated song"
DEFAULT_STYLE_PROMPT = "Custom song"
DEFAULT_TAGS = "Various"


@dataclass(frozen=True)
class ProviderSubmission:
    """Provider acknowledgement of one generation request."""

    task_id: str
    raw: dict[str, Any] = field(default_factory=dict)


class GenerationProvider(Protocol):
    def submit(self, song_data: Mapping[str, Any]) -> ProviderSubmission: ...


def build_provider_payload(
    song_data: Mapping[str, Any],
    *,
    model: str,
    callback_url: str,
) -> dict[str, Any]:
    """Translate client song parameters into the provider's request body."""
    instrumental = bool(song_data.get("instrumental", False))
    payload: dict[str, Any] = {
        "title": song_data.get("title") or DEFAULT_TITLE,
        "instrumental": instrumental,
        "make_instrumental": instrumental,
        "model": model,
        "wait_audio": False,
        "callBackUrl": callback_url,
    }
    if song_data.get("customMode"):
        payload["prompt"] = song_data.get("styleDescription") or DEFAULT_STYLE_PROMPT
        payload["tags"] = song_data.get("style") or DEFAULT_TAGS
        payload["lyrics"] = song_data.get("lyrics") or ""
    else:
        payload["prompt"] = song_data.get("prompt") or DEFAULT_PROMPT
        payload["tags"] = DEFAULT_TAGS
    return payload


def extract_task_id(response_json: Mapping[str, Any]) -> str | None:
    """Find the provider task id in any of the response shapes it uses."""
    nested = response_json.get("data")
    candidates = [
        response_json.get("task_id"),
        nested.get("taskId") if isinstance(nested, Mapping) else None,
        response_json.get("id"),
    ]
    for candidate in candidates:
        if candidate is None:
            continue
        text = str(candidate).strip()
        if text:
            return text
    return None


class HttpGenerationClient:
    """Generation API adapter over plain HTTP/JSON."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        callback_url: str,
        model: str = "V5",
        timeout_s: float = 30.0,
        max_retries: int = 0,
        backoff_s: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.callback_url = callback_url
        self.model = model
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def submit(self, song_data: Mapping[str, Any]) -> ProviderSubmission:
        if not self.base_url or not self.api_key:
            raise ProviderError("Provider base URL and API key must be configured")
        payload = build_provider_payload(
            song_data,
            model=self.model,
            callback_url=self.callback_url,
        )
        response_json = self._request_with_retry(payload)
        task_id = extract_task_id(response_json)
        if task_id is None:
            raise ProviderError("Provider response did not include a task id")
        return ProviderSubmission(task_id=task_id, raw=response_json)

    def _request_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        # HTTP errors surface from _request as ProviderError and are not retried.
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload)
            except (TimeoutError, error.URLError) as exc:
                last_error = exc
                logger.warning(
                    "provider event=request_failed attempt=%d/%d reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        raise ProviderError(f"Provider request failed: {last_error}") from last_error

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = request.Request(
            url=f"{self.base_url}/generate",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise ProviderError(f"Provider API error: {exc.code} - {raw_error}") from exc
        try:
            parsed = json.loads(body)
        except ValueError as exc:
            raise ProviderError("Provider response was not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise ProviderError("Provider response was not a JSON object")
        return parsed


def build_provider_client(settings: Settings) -> HttpGenerationClient:
    return HttpGenerationClient(
        base_url=settings.provider_base_url,
        api_key=settings.provider_api_key,
        callback_url=settings.callback_url,
        model=settings.provider_model,
        timeout_s=settings.provider_timeout_s,
        max_retries=settings.provider_max_retries,
        backoff_s=settings.provider_backoff_s,
    )

"""Generation provider integration."""

from song_tasks.provider.client import (
    GenerationProvider,
    HttpGenerationClient,
    ProviderSubmission,
    build_provider_client,
    build_provider_payload,
    extract_task_id,
)

__all__ = [
    "GenerationProvider",
    "HttpGenerationClient",
    "ProviderSubmission",
    "build_provider_client",
    "build_provider_payload",
    "extract_task_id",
]

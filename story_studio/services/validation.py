from __future__ import annotations

from typing import Any

from .errors import StoryPipelineError
from .settings import PipelineSettings
from .story_text import StoryRequest


def sanitize_field(value: Any, max_length: int, *, default: str) -> str:
    """Collapse whitespace, cut to ``max_length`` and fall back to ``default`` when empty."""

    if value is None:
        return default
    cleaned = " ".join(str(value).split())[:max_length].strip()
    return cleaned or default


def validate_story_request(method: str, form: Any, settings: PipelineSettings) -> StoryRequest:
    """Check an incoming generation request before any provider is called.

    Raises :class:`StoryPipelineError` with 405 for a wrong method, 400 when a
    required field is missing or blank, and 500 when the provider credential
    is not configured.
    """

    if (method or "").upper() != "POST":
        raise StoryPipelineError("METHOD_NOT_ALLOWED", "Use POST to generate a story.", 405)

    if not form.validate():
        missing = form.missing_fields()
        raise StoryPipelineError(
            "MISSING_FIELDS",
            f"Missing required fields: {', '.join(missing)}.",
            400,
            details={"missing": missing},
        )

    if not settings.api_key:
        raise StoryPipelineError("MISSING_API_KEY", "OPENAI_API_KEY is not configured.", 500)

    limit = settings.max_metadata_length
    label = settings.not_provided_label
    return StoryRequest(
        main_character=sanitize_field(form.mainCharacter.data, limit, default=label),
        plot=sanitize_field(form.plot.data, limit, default=label),
        ending=sanitize_field(form.ending.data, limit, default=label),
        genre=sanitize_field(form.genre.data, limit, default=label),
        literature=sanitize_field(form.literature.data, limit, default=label),
    )

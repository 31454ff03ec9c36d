from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from api_handler import EMPTY_RESPONSE, ProviderError

from .providers import (
    PromptConfigurationError,
    _extract_generation_parameters,
    _get_story_client,
    _load_prompt_entry,
    call_with_retry,
)
from .settings import PipelineSettings

PROMPT_KEY = "story_text"
ILLUSTRATION_PROMPT_KEY = "illustration_prompt"
STORY_EXCERPT_PROMPT_KEY = "illustration_from_story"
REQUEST_PROMPT_KEY = "illustration_from_request"

TRUNCATION_MARKER = "... [truncated]"

_WORD_PATTERN = re.compile(r"\b\w+[\w'-]*\b")


class StoryTextError(RuntimeError):
    """Raised when the story text cannot be generated."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass
class StoryRequest:
    main_character: str
    plot: str
    ending: str
    genre: str
    literature: str


@dataclass
class StoryTextResult:
    text: str
    prompt: str
    illustration_prompt: str
    word_count: int
    character_count: int
    elapsed_ms: int
    truncated: bool = False


def generate_story_text(request: StoryRequest, settings: PipelineSettings) -> StoryTextResult:
    """Write the story for ``request`` and derive an illustration prompt from it.

    Quota and credential failures surface immediately; transient failures are
    retried per ``settings`` before a :class:`StoryTextError` is raised.
    """

    started = time.monotonic()
    try:
        config_entry = _load_prompt_entry(PROMPT_KEY)
    except PromptConfigurationError as exc:
        raise StoryTextError("PROMPT_CONFIGURATION", str(exc)) from exc

    prompt_template = config_entry.get("prompt_template")
    if not prompt_template:
        raise StoryTextError("PROMPT_CONFIGURATION", "Story prompt configuration is missing the template text.")

    genre = _parameter_or_default(request.genre, config_entry.get("default_genre") or "fantasy", settings)
    literature = _parameter_or_default(
        request.literature, config_entry.get("default_literature") or "story", settings
    )
    system_prompt = (config_entry.get("system_prompt") or "").format(language=settings.story_language)
    final_prompt = prompt_template.format(
        literature=literature,
        genre=genre,
        main_character=request.main_character,
        plot=request.plot,
        ending=request.ending,
    )

    client = _get_story_client()
    if client is None:
        raise StoryTextError("MISSING_API_KEY", "The completion provider is not configured.")

    generation_kwargs = _extract_generation_parameters(config_entry.get("parameters"))
    try:
        story = call_with_retry(
            client.generate_text,
            settings,
            label="Story text generation",
            model=settings.text_model,
            system_prompt=system_prompt,
            user_prompt=final_prompt,
            **generation_kwargs,
        )
    except ProviderError as exc:
        raise StoryTextError(exc.kind, str(exc)) from exc

    story = (story or "").strip()
    if not story:
        raise StoryTextError(EMPTY_RESPONSE, "The completion provider returned an empty story.")

    story, truncated = truncate_text(story, settings.max_story_length)
    if truncated:
        current_app.logger.info("Story text truncated to %d characters.", settings.max_story_length)

    illustration_prompt = build_illustration_prompt(
        story, request, settings, client=client, genre=genre, literature=literature
    )

    return StoryTextResult(
        text=story,
        prompt=final_prompt,
        illustration_prompt=illustration_prompt,
        word_count=count_words(story),
        character_count=len(story),
        elapsed_ms=int((time.monotonic() - started) * 1000),
        truncated=truncated,
    )


def build_illustration_prompt(
    story: str,
    request: StoryRequest,
    settings: PipelineSettings,
    *,
    client: Optional[object] = None,
    genre: str = "fantasy",
    literature: str = "story",
) -> str:
    """Return the prompt for the image stage according to ``ILLUSTRATION_PROMPT_SOURCE``."""

    if settings.illustration_prompt_source == "llm" and client is not None:
        prompt = _illustration_prompt_from_llm(story, settings, client=client, genre=genre, literature=literature)
        if prompt:
            return prompt

    if settings.illustration_prompt_source == "request":
        template = _load_prompt_entry(REQUEST_PROMPT_KEY).get("prompt_template") or "{main_character}: {plot}"
        return template.format(main_character=request.main_character, plot=request.plot, genre=genre)

    entry = _load_prompt_entry(STORY_EXCERPT_PROMPT_KEY)
    excerpt_length = int(entry.get("excerpt_length") or 100)
    template = entry.get("prompt_template") or "{excerpt}"
    return template.format(excerpt=story[:excerpt_length].strip())


def _illustration_prompt_from_llm(
    story: str,
    settings: PipelineSettings,
    *,
    client: object,
    genre: str,
    literature: str,
) -> Optional[str]:
    entry = _load_prompt_entry(ILLUSTRATION_PROMPT_KEY)
    template = entry.get("prompt_template")
    if not template:
        return None
    try:
        prompt = call_with_retry(
            client.generate_text,
            settings,
            label="Illustration prompt generation",
            model=settings.text_model,
            system_prompt=entry.get("system_prompt") or "",
            user_prompt=template.format(story=story, genre=genre, literature=literature),
            **_extract_generation_parameters(entry.get("parameters")),
        )
    except ProviderError as exc:
        current_app.logger.warning(
            "Illustration prompt generation failed; using the story excerpt instead. Error: %s", exc
        )
        return None
    return (prompt or "").strip() or None


def truncate_text(text: str, max_length: int) -> tuple[str, bool]:
    """Cut ``text`` to ``max_length`` characters, marker included."""

    if len(text) <= max_length:
        return text, False
    return text[: max_length - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER, True


def count_words(text: str) -> int:
    return len(_WORD_PATTERN.findall(text))


def _parameter_or_default(value: str, default: str, settings: PipelineSettings) -> str:
    if not value or value == settings.not_provided_label:
        return default
    return value

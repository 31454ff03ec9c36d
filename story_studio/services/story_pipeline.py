"""Generation-and-persistence pipeline behind ``POST /api/generate-story``.

Stages run strictly in order for one request:
``validating -> generating_text -> generating_image -> persisting -> responding``.
Only the text stage can fail the request; the image and persistence stages
report their problems inside the response instead.
"""

from __future__ import annotations

import time
from typing import Any, Dict

from flask import current_app

from .errors import StoryPipelineError
from .illustration import generate_illustration
from .imaging import prepare_illustration
from .persistence import save_story
from .settings import PipelineSettings
from .story_response import build_story_response
from .story_text import StoryRequest, StoryTextError, generate_story_text


def generate_illustrated_story(request: StoryRequest, settings: PipelineSettings) -> Dict[str, Any]:
    """Run the text, image and persistence stages for a validated ``request``."""

    logger = current_app.logger
    started = time.monotonic()

    logger.info("Story pipeline: generating_text (%s, %s)", request.genre, request.literature)
    try:
        text_result = generate_story_text(request, settings)
    except StoryTextError as exc:
        logger.warning("Story pipeline: text generation failed (%s): %s", exc.kind, exc)
        raise StoryPipelineError.from_provider_kind(exc.kind, str(exc)) from exc
    logger.info("Story pipeline: text ready (%d chars, %d words)", text_result.character_count, text_result.word_count)

    logger.info("Story pipeline: generating_image")
    literature = request.literature if request.literature != settings.not_provided_label else "story"
    illustration = generate_illustration(text_result.illustration_prompt, settings, literature=literature)
    prepared = prepare_illustration(illustration.image, settings)

    logger.info("Story pipeline: persisting")
    persistence = save_story(text_result.text, prepared, request, settings)

    total_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Story pipeline: responding after %dms (image=%s, saved=%s)",
        total_ms,
        illustration.image is not None,
        persistence.saved,
    )
    return build_story_response(
        request,
        text_result,
        illustration,
        prepared,
        persistence,
        settings,
        total_ms=total_ms,
    )

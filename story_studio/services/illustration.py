"""Illustration stage: one image per story, never fatal to the request."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from api_handler import CONTENT_POLICY, ProviderError

from .providers import PromptConfigurationError, _get_story_client, _load_prompt_entry, call_with_retry
from .settings import PipelineSettings

SOFTENED_PROMPT_KEY = "illustration_softened"
_DEFAULT_SOFTENED_PROMPT = "A gentle, family-friendly cartoon illustration of a peaceful, colorful scene."


@dataclass
class IllustrationResult:
    image: Optional[bytes]
    prompt: str
    softened: bool = False
    error_code: Optional[str] = None
    error: Optional[str] = None
    elapsed_ms: int = 0
    revised_prompt: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.image) if self.image else 0


def generate_illustration(
    prompt: str,
    settings: PipelineSettings,
    *,
    literature: str = "story",
) -> IllustrationResult:
    """Request one illustration for ``prompt``.

    A content-policy refusal is retried once with a softened, generic prompt.
    Every failure is reported on the result instead of being raised.
    """

    started = time.monotonic()
    logger = current_app.logger

    if not settings.image_enabled:
        logger.info("Image generation disabled; continuing without an illustration.")
        return IllustrationResult(image=None, prompt=prompt, error_code="DISABLED", error="Image generation is disabled.")

    client = _get_story_client()
    if client is None:
        return IllustrationResult(
            image=None, prompt=prompt, error_code="MISSING_API_KEY", error="The image provider is not configured."
        )

    active_prompt = prompt
    softened = False
    while True:
        try:
            generated = call_with_retry(
                client.generate_image,
                settings,
                label="Illustration generation",
                model=settings.image_model,
                prompt=active_prompt,
                size=settings.image_size,
                response_format=settings.image_response_format,
                quality=settings.image_quality,
            )
        except ProviderError as exc:
            if exc.kind == CONTENT_POLICY and not softened:
                active_prompt = softened_prompt(literature)
                softened = True
                logger.warning("Illustration prompt refused by the content policy; retrying with a softened prompt.")
                continue
            logger.warning("Illustration generation failed (%s); continuing without an image. Error: %s", exc.kind, exc)
            return IllustrationResult(
                image=None,
                prompt=active_prompt,
                softened=softened,
                error_code=exc.kind,
                error=str(exc),
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )

        image = getattr(generated, "data", None)
        if not image:
            return IllustrationResult(
                image=None,
                prompt=active_prompt,
                softened=softened,
                error_code="EMPTY_RESPONSE",
                error="The image provider returned no data.",
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )

        logger.info("Illustration generated: %d KB.", round(len(image) / 1024))
        return IllustrationResult(
            image=image,
            prompt=active_prompt,
            softened=softened,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            revised_prompt=getattr(generated, "revised_prompt", None),
        )


def softened_prompt(literature: str = "story") -> str:
    try:
        template = _load_prompt_entry(SOFTENED_PROMPT_KEY).get("prompt_template")
    except PromptConfigurationError:
        template = None
    if not template:
        return _DEFAULT_SOFTENED_PROMPT
    return template.format(literature=literature or "story")

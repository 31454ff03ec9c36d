"""Assemble the JSON payload returned by the generation endpoint."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..models import illustration_kind
from .illustration import IllustrationResult
from .imaging import PreparedIllustration
from .persistence import PersistenceResult
from .settings import PipelineSettings
from .story_text import StoryRequest, StoryTextResult


def build_story_response(
    request: StoryRequest,
    text_result: StoryTextResult,
    illustration: IllustrationResult,
    prepared: PreparedIllustration,
    persistence: PersistenceResult,
    settings: PipelineSettings,
    *,
    total_ms: int,
) -> Dict[str, Any]:
    """Combine every stage's outcome into one response body.

    Image and persistence failures only show up as fields here; the request
    itself still succeeded because the story text exists.
    """

    shown_illustration = persistence.illustration if illustration_kind(persistence.illustration) == "url" else prepared.inline

    return {
        "success": True,
        "story": text_result.text,
        "illustration": shown_illustration,
        "illustrationType": illustration_kind(shown_illustration),
        "illustrationPrompt": illustration.prompt,
        "metadata": {
            "totalTimeMs": total_ms,
            "textTimeMs": text_result.elapsed_ms,
            "imageTimeMs": illustration.elapsed_ms,
            "textLength": text_result.character_count,
            "wordCount": text_result.word_count,
            "textTruncated": text_result.truncated,
            "hasImage": illustration.image is not None,
            "image": {
                "originalKB": _kb(prepared.original_size),
                "storedKB": _kb(prepared.stored_size),
                "dimensions": _dimensions(prepared),
                "quality": prepared.quality,
                "strategy": prepared.strategy,
                "storage": settings.illustration_storage,
                "softenedPrompt": illustration.softened,
                "revisedPrompt": illustration.revised_prompt,
                "errorCode": illustration.error_code,
                "error": illustration.error,
            },
        },
        "database": {
            "saved": persistence.saved,
            "storyId": persistence.story_id,
            "warning": persistence.warning,
            "errorCode": persistence.error_code,
            "error": persistence.error,
            "imageSizeKB": persistence.image_size_kb,
        },
        "userInput": {
            "mainCharacter": request.main_character,
            "plot": request.plot,
            "ending": request.ending,
            "genre": request.genre,
            "literature": request.literature,
        },
    }


def _kb(size: int) -> Optional[int]:
    return round(size / 1024) if size else None


def _dimensions(prepared: PreparedIllustration) -> Optional[str]:
    if prepared.width and prepared.height:
        return f"{prepared.width}x{prepared.height}"
    return None

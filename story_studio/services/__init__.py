"""Service layer for the illustrated story pipeline."""

from __future__ import annotations

from .errors import StoryPipelineError  # noqa: F401
from .persistence import StoreUnavailableError, get_story, list_stories, save_story  # noqa: F401
from .settings import PipelineSettings, current_settings  # noqa: F401
from .story_pipeline import generate_illustrated_story  # noqa: F401
from .story_text import StoryRequest, StoryTextError  # noqa: F401

__all__ = [
    "PipelineSettings",
    "StoreUnavailableError",
    "StoryPipelineError",
    "StoryRequest",
    "StoryTextError",
    "current_settings",
    "generate_illustrated_story",
    "get_story",
    "list_stories",
    "save_story",
]

"""Tunable thresholds for the story pipeline, gathered in one place."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from flask import current_app

from ..models import EXTENDED_STORY_COLUMNS, METADATA_COLUMN_LENGTH

IMAGE_SIZES = ("256x256", "512x512", "1024x1024")
IMAGE_RESPONSE_FORMATS = ("b64_json", "url")
ILLUSTRATION_PROMPT_SOURCES = ("story", "request", "llm")
ILLUSTRATION_STORAGES = ("inline", "blob")
OVERSIZE_STRATEGIES = ("placeholder", "truncate", "omit")


@dataclass(frozen=True)
class PipelineSettings:
    """Settings passed explicitly into every pipeline stage.

    Attributes
    ----------
    database_url:
        Connection string for the story store. ``None`` disables persistence.
    api_key:
        Credential for the completion and image provider.
    max_story_length:
        Upper bound for stored story text, truncation marker and (on the
        reduced write) metadata footer included.
    max_image_kb:
        Upper bound for an inline illustration (the stored data URI), in KiB.
    oversize_strategy:
        What to do with an inline illustration that cannot be compressed under
        ``max_image_kb``: ``placeholder``, ``truncate`` (lossy, may yield
        invalid image data) or ``omit``.
    retry_attempts / retry_delay:
        Extra attempts and fixed delay (seconds) for transient provider errors.
    """

    database_url: Optional[str] = None
    api_key: Optional[str] = None
    text_model: str = "gpt-4o"
    story_language: str = "Brazilian Portuguese"
    image_enabled: bool = True
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_quality: Optional[str] = "standard"
    image_response_format: str = "b64_json"
    illustration_prompt_source: str = "story"
    illustration_storage: str = "inline"
    oversize_strategy: str = "placeholder"
    max_image_kb: int = 80
    thumbnail_width: int = 320
    thumbnail_height: int = 240
    jpeg_quality: int = 60
    min_jpeg_quality: int = 20
    max_story_length: int = 10000
    max_metadata_length: int = 200
    not_provided_label: str = "Not provided"
    retry_attempts: int = 2
    retry_delay: float = 1.0
    library_page_size: int = 50
    library_max_page_size: int = 100

    def __post_init__(self) -> None:
        _require_choice("IMAGE_SIZE", self.image_size, IMAGE_SIZES)
        _require_choice("IMAGE_RESPONSE_FORMAT", self.image_response_format, IMAGE_RESPONSE_FORMATS)
        _require_choice(
            "ILLUSTRATION_PROMPT_SOURCE", self.illustration_prompt_source, ILLUSTRATION_PROMPT_SOURCES
        )
        _require_choice("ILLUSTRATION_STORAGE", self.illustration_storage, ILLUSTRATION_STORAGES)
        _require_choice("OVERSIZE_STRATEGY", self.oversize_strategy, OVERSIZE_STRATEGIES)
        if not 1 <= self.max_metadata_length <= METADATA_COLUMN_LENGTH:
            raise ValueError(f"MAX_METADATA_LENGTH must be between 1 and {METADATA_COLUMN_LENGTH}.")
        # Room for the story body plus a fully populated metadata footer on the reduced write.
        if self.max_story_length < len(EXTENDED_STORY_COLUMNS) * self.max_metadata_length + 300:
            raise ValueError("MAX_STORY_LENGTH must be at least 5 * MAX_METADATA_LENGTH + 300 characters.")
        if self.max_image_kb <= 0:
            raise ValueError("MAX_IMAGE_KB must be positive.")
        if not 1 <= self.min_jpeg_quality <= self.jpeg_quality <= 95:
            raise ValueError("JPEG qualities must satisfy 1 <= MIN_JPEG_QUALITY <= JPEG_QUALITY <= 95.")
        if self.retry_attempts < 0 or self.retry_delay < 0:
            raise ValueError("Retry settings must not be negative.")
        if not 1 <= self.library_page_size <= self.library_max_page_size:
            raise ValueError("LIBRARY_PAGE_SIZE must be between 1 and LIBRARY_MAX_PAGE_SIZE.")

    @property
    def max_image_bytes(self) -> int:
        return self.max_image_kb * 1024

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "PipelineSettings":
        """Build settings from a Flask config (or any mapping of upper-case keys)."""

        defaults = cls()
        return cls(
            database_url=config.get("DATABASE_URL") or None,
            api_key=(config.get("OPENAI_API_KEY") or "").strip() or None,
            text_model=config.get("TEXT_MODEL", defaults.text_model),
            story_language=config.get("STORY_LANGUAGE", defaults.story_language),
            image_enabled=bool(config.get("IMAGE_GENERATION_ENABLED", defaults.image_enabled)),
            image_model=config.get("IMAGE_MODEL", defaults.image_model),
            image_size=config.get("IMAGE_SIZE", defaults.image_size),
            image_quality=config.get("IMAGE_QUALITY", defaults.image_quality) or None,
            image_response_format=config.get("IMAGE_RESPONSE_FORMAT", defaults.image_response_format),
            illustration_prompt_source=config.get(
                "ILLUSTRATION_PROMPT_SOURCE", defaults.illustration_prompt_source
            ),
            illustration_storage=config.get("ILLUSTRATION_STORAGE", defaults.illustration_storage),
            oversize_strategy=config.get("OVERSIZE_STRATEGY", defaults.oversize_strategy),
            max_image_kb=int(config.get("MAX_IMAGE_KB", defaults.max_image_kb)),
            thumbnail_width=int(config.get("THUMBNAIL_WIDTH", defaults.thumbnail_width)),
            thumbnail_height=int(config.get("THUMBNAIL_HEIGHT", defaults.thumbnail_height)),
            jpeg_quality=int(config.get("JPEG_QUALITY", defaults.jpeg_quality)),
            min_jpeg_quality=int(config.get("MIN_JPEG_QUALITY", defaults.min_jpeg_quality)),
            max_story_length=int(config.get("MAX_STORY_LENGTH", defaults.max_story_length)),
            max_metadata_length=int(config.get("MAX_METADATA_LENGTH", defaults.max_metadata_length)),
            not_provided_label=config.get("NOT_PROVIDED_LABEL", defaults.not_provided_label),
            retry_attempts=int(config.get("PROVIDER_RETRY_ATTEMPTS", defaults.retry_attempts)),
            retry_delay=float(config.get("PROVIDER_RETRY_DELAY", defaults.retry_delay)),
            library_page_size=int(config.get("LIBRARY_PAGE_SIZE", defaults.library_page_size)),
            library_max_page_size=int(config.get("LIBRARY_MAX_PAGE_SIZE", defaults.library_max_page_size)),
        )


def _require_choice(name: str, value: str, choices: tuple) -> None:
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}; got {value!r}.")


def current_settings() -> PipelineSettings:
    return PipelineSettings.from_mapping(current_app.config)

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_studio.config import TestConfig, _normalise_database_url
from story_studio.services.settings import PipelineSettings
from story_studio.services.validation import sanitize_field


def test_settings_follow_flask_config():
    config = {key: getattr(TestConfig, key) for key in dir(TestConfig) if key.isupper()}

    settings = PipelineSettings.from_mapping(config)

    assert settings.database_url == "sqlite:///:memory:"
    assert settings.api_key == "sk-test"
    assert settings.max_image_bytes == settings.max_image_kb * 1024
    assert settings.retry_delay == 0.0


def test_blank_api_key_counts_as_missing():
    assert PipelineSettings.from_mapping({"OPENAI_API_KEY": "   "}).api_key is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"OVERSIZE_STRATEGY": "shrink"},
        {"ILLUSTRATION_STORAGE": "ftp"},
        {"MAX_IMAGE_KB": 0},
        {"JPEG_QUALITY": 10, "MIN_JPEG_QUALITY": 20},
        {"LIBRARY_PAGE_SIZE": 500},
        {"MAX_METADATA_LENGTH": 201},
        {"MAX_STORY_LENGTH": 1000},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(ValueError):
        PipelineSettings.from_mapping(overrides)


def test_hosted_postgres_urls_are_normalised():
    assert _normalise_database_url("postgres://u:p@db/stories") == "postgresql://u:p@db/stories"
    assert _normalise_database_url("  ") is None


def test_sanitize_field_collapses_whitespace_and_truncates():
    assert sanitize_field("  Ana \n  Clara ", 200, default="Not provided") == "Ana Clara"
    assert sanitize_field("x" * 300, 200, default="Not provided") == "x" * 200
    assert sanitize_field(None, 200, default="Not provided") == "Not provided"


def test_story_length_must_fit_the_metadata_footer():
    PipelineSettings.from_mapping({"MAX_STORY_LENGTH": 1300})
    PipelineSettings.from_mapping({"MAX_STORY_LENGTH": 800, "MAX_METADATA_LENGTH": 100})

    with pytest.raises(ValueError):
        PipelineSettings.from_mapping({"MAX_STORY_LENGTH": 1299})

import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw and raw.strip() else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw and raw.strip() else default


def _normalise_database_url(url: Optional[str]) -> Optional[str]:
    """Return ``url`` with hosted Postgres prefixes rewritten for SQLAlchemy."""

    if not url or not url.strip():
        return None
    url = url.strip()
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # The store is optional: without DATABASE_URL stories are generated but not saved.
    DATABASE_URL = _normalise_database_url(os.environ.get("DATABASE_URL"))
    SQLALCHEMY_DATABASE_URI = DATABASE_URL or "sqlite://"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    SCHEMA_AUTO_UPGRADE = _env_flag("SCHEMA_AUTO_UPGRADE", True)
    WTF_CSRF_TIME_LIMIT = None

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_TIMEOUT = _env_float("OPENAI_TIMEOUT", 60.0)
    TEXT_MODEL = os.environ.get("TEXT_MODEL", "gpt-4o")
    STORY_LANGUAGE = os.environ.get("STORY_LANGUAGE", "Brazilian Portuguese")

    IMAGE_GENERATION_ENABLED = _env_flag("IMAGE_GENERATION_ENABLED", True)
    IMAGE_MODEL = os.environ.get("IMAGE_MODEL", "dall-e-3")
    IMAGE_SIZE = os.environ.get("IMAGE_SIZE", "1024x1024")
    IMAGE_QUALITY = os.environ.get("IMAGE_QUALITY", "standard")
    IMAGE_RESPONSE_FORMAT = os.environ.get("IMAGE_RESPONSE_FORMAT", "b64_json")
    ILLUSTRATION_PROMPT_SOURCE = os.environ.get("ILLUSTRATION_PROMPT_SOURCE", "story")
    ILLUSTRATION_STORAGE = os.environ.get("ILLUSTRATION_STORAGE", "inline")
    OVERSIZE_STRATEGY = os.environ.get("OVERSIZE_STRATEGY", "placeholder")

    MAX_IMAGE_KB = _env_int("MAX_IMAGE_KB", 80)
    THUMBNAIL_WIDTH = _env_int("THUMBNAIL_WIDTH", 320)
    THUMBNAIL_HEIGHT = _env_int("THUMBNAIL_HEIGHT", 240)
    JPEG_QUALITY = _env_int("JPEG_QUALITY", 60)
    MIN_JPEG_QUALITY = _env_int("MIN_JPEG_QUALITY", 20)
    MAX_STORY_LENGTH = _env_int("MAX_STORY_LENGTH", 10000)
    MAX_METADATA_LENGTH = _env_int("MAX_METADATA_LENGTH", 200)
    NOT_PROVIDED_LABEL = os.environ.get("NOT_PROVIDED_LABEL", "Not provided")

    PROVIDER_RETRY_ATTEMPTS = _env_int("PROVIDER_RETRY_ATTEMPTS", 2)
    PROVIDER_RETRY_DELAY = _env_float("PROVIDER_RETRY_DELAY", 1.0)

    LIBRARY_PAGE_SIZE = _env_int("LIBRARY_PAGE_SIZE", 50)
    LIBRARY_MAX_PAGE_SIZE = _env_int("LIBRARY_MAX_PAGE_SIZE", 100)

    BLOB_BUCKET = os.environ.get("BLOB_BUCKET")
    BLOB_ENDPOINT_URL = os.environ.get("BLOB_ENDPOINT_URL")
    BLOB_ACCESS_KEY_ID = os.environ.get("BLOB_ACCESS_KEY_ID")
    BLOB_SECRET_ACCESS_KEY = os.environ.get("BLOB_SECRET_ACCESS_KEY")
    BLOB_REGION = os.environ.get("BLOB_REGION", "auto")
    BLOB_PUBLIC_BASE_URL = os.environ.get("BLOB_PUBLIC_BASE_URL")


class TestConfig(Config):
    TESTING = True
    DATABASE_URL = "sqlite:///:memory:"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}
    WTF_CSRF_ENABLED = False
    OPENAI_API_KEY = "sk-test"
    PROVIDER_RETRY_DELAY = 0.0
    IMAGE_RESPONSE_FORMAT = "b64_json"
    ILLUSTRATION_PROMPT_SOURCE = "story"
    ILLUSTRATION_STORAGE = "inline"
    OVERSIZE_STRATEGY = "placeholder"
    BLOB_BUCKET = None

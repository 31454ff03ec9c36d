"""Blob storage for illustrations kept outside the database."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

LOGGER = logging.getLogger(__name__)

BLOB_INSTANCE_KEY = "_BLOB_STORAGE_INSTANCE"

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


class StorageError(RuntimeError):
    """Raised when an upload to blob storage fails."""


class BlobStorage:
    """Put-only wrapper around an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: str = "auto",
        public_base_url: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("A bucket name is required for blob storage.")
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=region,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> Optional["BlobStorage"]:
        bucket = config.get("BLOB_BUCKET")
        if not bucket:
            return None
        return cls(
            bucket,
            endpoint_url=config.get("BLOB_ENDPOINT_URL"),
            access_key_id=config.get("BLOB_ACCESS_KEY_ID"),
            secret_access_key=config.get("BLOB_SECRET_ACCESS_KEY"),
            region=config.get("BLOB_REGION") or "auto",
            public_base_url=config.get("BLOB_PUBLIC_BASE_URL"),
        )

    def put(self, filename: str, data: bytes, *, content_type: str, access: str = "public") -> str:
        """Upload ``data`` under ``filename`` and return a durable URL for it."""

        if not data:
            raise StorageError("Refusing to upload an empty file.")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=filename,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
                Metadata={"access": access},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload of {filename} failed: {exc}") from exc

        LOGGER.info("Uploaded %s (%d bytes) to bucket %s", filename, len(data), self.bucket)
        return self.url_for(filename)

    def url_for(self, filename: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{filename}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{filename}"
        return f"https://{self.bucket}.s3.amazonaws.com/{filename}"


def illustration_filename(story_id: Any, content_type: str) -> str:
    return f"stories/{story_id}.{_EXTENSIONS.get(content_type, 'bin')}"


def _get_blob_storage() -> Optional[BlobStorage]:  # pragma: no cover - integration point
    app = current_app
    if BLOB_INSTANCE_KEY in app.config:
        return app.config[BLOB_INSTANCE_KEY]

    storage = BlobStorage.from_config(app.config)
    if storage is None:
        app.logger.info("BLOB_BUCKET not configured; blob storage unavailable.")
    app.config[BLOB_INSTANCE_KEY] = storage
    return storage

from __future__ import annotations

from datetime import datetime

from .extensions import db

BASE_STORY_COLUMNS = ("id", "text", "illustration", "created_at")
EXTENDED_STORY_COLUMNS = ("main_character", "plot", "ending", "genre", "literature")
METADATA_COLUMN_LENGTH = 200


class Story(db.Model):
    __tablename__ = "stories"

    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    illustration = db.Column(db.Text, nullable=False, default="")
    main_character = db.Column(db.String(METADATA_COLUMN_LENGTH), nullable=True)
    plot = db.Column(db.String(METADATA_COLUMN_LENGTH), nullable=True)
    ending = db.Column(db.String(METADATA_COLUMN_LENGTH), nullable=True)
    genre = db.Column(db.String(METADATA_COLUMN_LENGTH), nullable=True)
    literature = db.Column(db.String(METADATA_COLUMN_LENGTH), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<Story {self.id} ({len(self.text or '')} chars)>"


def illustration_kind(illustration: str | None) -> str:
    """Classify a stored illustration value as ``inline``, ``url`` or ``none``."""

    if not illustration:
        return "none"
    if illustration.startswith("data:"):
        return "inline"
    return "url"

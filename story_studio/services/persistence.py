"""Best-effort persistence of generated stories and the library read path."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy import func, insert, select, text, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError

from ..db_utils import ensure_database_schema, story_columns
from ..extensions import db
from ..models import EXTENDED_STORY_COLUMNS, Story, illustration_kind
from .imaging import PreparedIllustration
from .settings import PipelineSettings
from .storage import StorageError, _get_blob_storage, illustration_filename
from .story_text import StoryRequest, truncate_text

FALLBACK_WARNING = "Saved without extended metadata columns"

FOOTER_START = "=== STORY DETAILS ==="
FOOTER_END = "======================="
FOOTER_LABELS: Tuple[Tuple[str, str], ...] = (
    ("main_character", "Main character"),
    ("plot", "Plot"),
    ("ending", "Ending"),
    ("genre", "Genre"),
    ("literature", "Literary form"),
)


class StoreUnavailableError(RuntimeError):
    """Raised by the read path when the story store cannot be used."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class PersistenceResult:
    saved: bool
    story_id: Optional[int] = None
    warning: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    illustration: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def image_size_kb(self) -> Optional[int]:
        if not self.saved or not self.illustration:
            return None
        return round(len(self.illustration) / 1024)


@dataclass
class StoryRecord:
    id: int
    text: str
    illustration: str
    metadata: Dict[str, str]
    created_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "illustration": self.illustration,
            "illustrationType": illustration_kind(self.illustration),
            "mainCharacter": self.metadata.get("main_character"),
            "plot": self.metadata.get("plot"),
            "ending": self.metadata.get("ending"),
            "genre": self.metadata.get("genre"),
            "literature": self.metadata.get("literature"),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class StoryPage:
    items: List[StoryRecord]
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0


# ---------------------------------------------------------------- write path


def save_story(
    story_text: str,
    illustration: PreparedIllustration,
    request: StoryRequest,
    settings: PipelineSettings,
) -> PersistenceResult:
    """Write one Story record, degrading instead of raising.

    The full write is attempted when the table has every metadata column;
    otherwise (or when the full write is rejected by the schema) a reduced
    write with the base columns is made and the metadata is kept in a footer
    appended to the stored text.
    """

    logger = current_app.logger
    if not settings.database_url:
        logger.warning("DATABASE_URL not configured; story not saved.")
        return PersistenceResult(
            saved=False, error_code="NO_DATABASE_URL", error="DATABASE_URL is not configured."
        )

    try:
        _ping_store()
        columns = story_columns()
        if not columns:
            ensure_database_schema()
            columns = story_columns()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not reach the story store: %s", exc)
        return PersistenceResult(saved=False, error_code="CONNECTION_FAILED", error=str(exc))

    story_text, _ = truncate_text(story_text, settings.max_story_length)
    blob_mode = settings.illustration_storage == "blob"
    stored_illustration = "" if blob_mode else illustration.inline
    result = PersistenceResult(saved=False)

    story_id: Optional[int] = None
    missing = [name for name in EXTENDED_STORY_COLUMNS if name not in columns]
    if not missing:
        try:
            story_id = _write_full(story_text, stored_illustration, request)
        except (OperationalError, ProgrammingError) as exc:
            db.session.rollback()
            logger.warning("Full story write rejected by the schema; retrying with base columns. Error: %s", exc)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Story write failed: %s", exc)
            return PersistenceResult(saved=False, error_code="WRITE_FAILED", error=str(exc))
    else:
        logger.warning("Story table lacks metadata columns %s; writing base columns only.", ", ".join(missing))

    if story_id is None:
        try:
            footer = build_metadata_footer(request)
            body, _ = truncate_text(story_text, settings.max_story_length - len(footer) - 2)
            story_id = _write_base(body + "\n\n" + footer, stored_illustration)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Story write failed: %s", exc)
            return PersistenceResult(saved=False, error_code="WRITE_FAILED", error=str(exc))
        result.warnings.append(FALLBACK_WARNING)

    result.saved = True
    result.story_id = story_id
    result.illustration = stored_illustration

    if blob_mode and illustration.has_image:
        url, warning = _attach_blob_illustration(story_id, illustration)
        if url:
            result.illustration = url
        if warning:
            result.warnings.append(warning)
            result.error_code = "STORAGE_FAILED"

    result.warning = "; ".join(result.warnings) or None
    logger.info(
        "Story %s saved (illustration %s, %d KB).",
        story_id,
        illustration_kind(result.illustration),
        round(len(result.illustration) / 1024),
    )
    return result


def _ping_store() -> None:
    db.session.execute(text("SELECT 1"))


def _write_full(story_text: str, illustration: str, request: StoryRequest) -> int:
    story = Story(
        text=story_text,
        illustration=illustration,
        main_character=request.main_character,
        plot=request.plot,
        ending=request.ending,
        genre=request.genre,
        literature=request.literature,
    )
    db.session.add(story)
    db.session.commit()
    return story.id


def _write_base(story_text: str, illustration: str) -> int:
    statement = insert(Story.__table__).values(
        text=story_text,
        illustration=illustration,
        created_at=datetime.utcnow(),
    )
    outcome = db.session.execute(statement)
    db.session.commit()
    return outcome.inserted_primary_key[0]


def _attach_blob_illustration(
    story_id: int, illustration: PreparedIllustration
) -> Tuple[Optional[str], Optional[str]]:
    logger = current_app.logger
    storage = _get_blob_storage()
    if storage is None:
        logger.warning("Blob storage not configured; story %s saved without an illustration.", story_id)
        return None, "Blob storage is not configured; illustration not saved"

    filename = illustration_filename(story_id, illustration.content_type)
    try:
        url = storage.put(filename, illustration.original or b"", content_type=illustration.content_type)
    except StorageError as exc:
        logger.warning("Illustration upload failed for story %s: %s", story_id, exc)
        return None, "Illustration upload failed; story saved without it"

    try:
        db.session.execute(
            update(Story.__table__).where(Story.__table__.c.id == story_id).values(illustration=url)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Could not attach illustration URL to story %s: %s", story_id, exc)
        return None, "Illustration uploaded but could not be attached to the story"
    return url, None


# ---------------------------------------------------------------- metadata footer


def build_metadata_footer(request: StoryRequest) -> str:
    lines = [FOOTER_START]
    for attribute, label in FOOTER_LABELS:
        lines.append(f"{label}: {getattr(request, attribute)}")
    lines.append(FOOTER_END)
    return "\n".join(lines)


def split_metadata_footer(stored_text: str) -> Tuple[str, Dict[str, str]]:
    """Separate a stored text from the metadata footer written by the reduced write."""

    # Markers only count on lines of their own; field values are always prefixed by a label.
    lines = stored_text.split("\n")
    end = next((index for index in range(len(lines) - 1, -1, -1) if lines[index].strip() == FOOTER_END), None)
    if end is None:
        return stored_text, {}
    start = next((index for index in range(end - 1, -1, -1) if lines[index].strip() == FOOTER_START), None)
    if start is None:
        return stored_text, {}

    labels = {label: attribute for attribute, label in FOOTER_LABELS}
    metadata: Dict[str, str] = {}
    for line in lines[start + 1:end]:
        label, separator, value = line.partition(":")
        if separator and label.strip() in labels:
            metadata[labels[label.strip()]] = value.strip()
    return "\n".join(lines[:start]).rstrip(), metadata


# ---------------------------------------------------------------- read path


def list_stories(page: int, per_page: int, settings: PipelineSettings) -> StoryPage:
    """Return one page of stories, newest first."""

    if not settings.database_url:
        raise StoreUnavailableError("NO_DATABASE_URL", "DATABASE_URL is not configured.")

    page = max(1, page)
    per_page = max(1, min(per_page, settings.library_max_page_size))
    try:
        columns = story_columns()
        if not columns:
            return StoryPage(items=[], page=page, per_page=per_page, total=0)
        table = Story.__table__
        selected = [column for column in table.c if column.name in columns]
        total = db.session.execute(select(func.count()).select_from(table)).scalar_one()
        rows = (
            db.session.execute(
                select(*selected)
                .order_by(table.c.created_at.desc(), table.c.id.desc())
                .limit(per_page)
                .offset((page - 1) * per_page)
            )
            .mappings()
            .all()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Could not read the story library: %s", exc)
        raise StoreUnavailableError("CONNECTION_FAILED", "The story store is unavailable.") from exc

    return StoryPage(
        items=[_row_to_record(row, settings) for row in rows],
        page=page,
        per_page=per_page,
        total=total,
    )


def get_story(story_id: int, settings: PipelineSettings) -> Optional[StoryRecord]:
    if not settings.database_url:
        raise StoreUnavailableError("NO_DATABASE_URL", "DATABASE_URL is not configured.")
    try:
        columns = story_columns()
        if not columns:
            return None
        table = Story.__table__
        selected = [column for column in table.c if column.name in columns]
        row = db.session.execute(select(*selected).where(table.c.id == story_id)).mappings().first()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Could not read story %s: %s", story_id, exc)
        raise StoreUnavailableError("CONNECTION_FAILED", "The story store is unavailable.") from exc
    return _row_to_record(row, settings) if row else None


def _row_to_record(row: Mapping[str, Any], settings: PipelineSettings) -> StoryRecord:
    story_text, footer = split_metadata_footer(row.get("text") or "")
    metadata = {
        name: row.get(name) or footer.get(name) or settings.not_provided_label
        for name in EXTENDED_STORY_COLUMNS
    }
    return StoryRecord(
        id=row["id"],
        text=story_text,
        illustration=row.get("illustration") or "",
        metadata=metadata,
        created_at=row.get("created_at"),
    )

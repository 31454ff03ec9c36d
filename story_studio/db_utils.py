"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from flask import current_app
from sqlalchemy import inspect, text

from .extensions import db

STORIES_TABLE = "stories"


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def story_columns() -> Set[str]:
    """Return the column names the ``stories`` table actually has.

    An empty set means the table does not exist yet.
    """

    inspector = inspect(db.engine)
    if STORIES_TABLE not in inspector.get_table_names():
        return set()
    return _get_column_names(STORIES_TABLE)


def ensure_database_schema() -> None:
    """Ensure that the ``stories`` table exists and carries the metadata columns.

    Runs on every application start. Missing metadata columns are only added when
    ``SCHEMA_AUTO_UPGRADE`` is enabled; otherwise the persister detects them
    at write time and falls back to the base columns. SQLAlchemy errors
    propagate so the caller can decide whether an unreachable store is fatal.
    """

    inspector = inspect(db.engine)
    table_names: Iterable[str] = inspector.get_table_names()

    # Import locally to avoid circular import issues during application setup.
    from .models import EXTENDED_STORY_COLUMNS, Story

    if STORIES_TABLE not in table_names:
        Story.__table__.create(bind=db.engine)
        return

    if not current_app.config.get("SCHEMA_AUTO_UPGRADE", True):
        return

    existing = _get_column_names(STORIES_TABLE)
    alter_statements = [
        f"ALTER TABLE {STORIES_TABLE} ADD COLUMN {column_name} VARCHAR(200)"
        for column_name in EXTENDED_STORY_COLUMNS
        if column_name not in existing
    ]

    for statement in alter_statements:
        with db.engine.begin() as connection:
            connection.execute(text(statement))
    if alter_statements:
        current_app.logger.info(
            "Added %d metadata column(s) to the %s table.", len(alter_statements), STORIES_TABLE
        )

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, orm
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import mapped_column

from typing_extensions import Annotated

str255 = Annotated[str, 255]
timestamptz = Annotated[
    datetime, mapped_column(DateTime(timezone=True), nullable=False)
]

json_document = JSON(none_as_null=True).with_variant(
    JSONB(none_as_null=True), "postgresql"
)
"""JSONB on PostgreSQL, plain JSON elsewhere. None is stored as SQL NULL."""


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str255: String(255),
    }


def dialect_insert(dialect_name: str):
    """
    Return the dialect-specific `insert` construct supporting ON CONFLICT.

    PostgreSQL is the production target; SQLite shares the same
    `on_conflict_do_update` API and is used for local runs and tests.
    """
    if dialect_name == "sqlite":
        return sqlite.insert
    return postgresql.insert

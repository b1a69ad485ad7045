"""Single-key configuration values such as the admin credential."""
from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from net.cloudmon.model.base import Base, dialect_insert, timestamptz


class ConfigEntry(Base):
    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[timestamptz]


def upsert_config_stmt(dialect_name: str, key: str, value: str, updated_at: datetime):
    """Insert the key or overwrite its value if it already exists."""
    return (
        dialect_insert(dialect_name)(ConfigEntry)
        .values([{"key": key, "value": value, "updated_at": updated_at}])
        .on_conflict_do_update(
            index_elements=["key"],
            set_={"value": value, "updated_at": updated_at},
        )
    )

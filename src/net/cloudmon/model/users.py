"""Dashboard user accounts.

Owned accounts and webhooks reference users with ON DELETE CASCADE, so deleting
a user removes everything it owns in the same statement.
"""
from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from net.cloudmon.model.base import Base, timestamptz


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    created_at: Mapped[timestamptz]
    updated_at: Mapped[timestamptz]

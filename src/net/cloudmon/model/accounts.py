"""Monitored provider accounts.

A row stores either a clear `token` or an `encrypted_token` document
({ciphertext, nonce, tag}), never both.
"""
from typing import Any, Optional

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from net.cloudmon.model.base import Base, json_document, str255, timestamptz


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[str255]
    token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    encrypted_token: Mapped[Optional[Any]] = mapped_column(
        json_document, nullable=True
    )
    created_at: Mapped[timestamptz]
    updated_at: Mapped[timestamptz]

"""Webhook registrations."""
from typing import Any, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from net.cloudmon.model.base import Base, dialect_insert, json_document, timestamptz
from net.cloudmon.store.types import WebhookRegistration


class WebhookRow(Base):
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    events: Mapped[Optional[Any]] = mapped_column(json_document, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[timestamptz]


def upsert_webhook_stmt(dialect_name: str, webhook: WebhookRegistration):
    """
    Insert a webhook or overwrite the mutable fields of an existing id.

    Ownership (`user_id`) and `created_at` are fixed at first insert.
    """
    return (
        dialect_insert(dialect_name)(WebhookRow)
        .values(
            [
                {
                    "id": webhook.id,
                    "user_id": webhook.user_id,
                    "name": webhook.name,
                    "url": webhook.url,
                    "secret": webhook.secret,
                    "events": webhook.events,
                    "enabled": webhook.enabled,
                    "created_at": webhook.created_at,
                }
            ]
        )
        .on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": webhook.name,
                "url": webhook.url,
                "secret": webhook.secret,
                "events": webhook.events,
                "enabled": webhook.enabled,
            },
        )
    )

"""Domain records exchanged between the persistence layer and its callers.

These are plain pydantic models, independent of the storage substrate. Both
backends convert their on-disk or in-database representation to and from them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import secrets
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes returned by drivers that drop the offset."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_webhook_id() -> str:
    """Return a 16 hex character webhook id."""
    return secrets.token_hex(8)


class Role(str, Enum):
    admin = "admin"
    user = "user"


class EncryptedToken(BaseModel):
    """AES-GCM sealed token. All fields are hex encoded."""

    ciphertext: str
    nonce: str
    tag: str


class Account(BaseModel):
    """
    A monitored provider account.

    `encrypted_token` is only populated when a stored ciphertext could not be
    opened. It is excluded from serialisation so it never reaches API
    responses, but a load/save round trip keeps it intact.
    """

    name: str
    token: Optional[str] = None
    user_id: Optional[int] = None
    encrypted_token: Optional[EncryptedToken] = Field(default=None, exclude=True)


class User(BaseModel):
    id: int
    username: str
    password_hash: Optional[str] = None
    role: Role = Role.user
    created_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime


class WebhookRegistration(BaseModel):
    """
    A webhook target.

    An empty or absent `events` list subscribes the target to every event type.
    """

    id: str = Field(default_factory=new_webhook_id)
    user_id: Optional[int] = None
    name: Optional[str] = None
    url: str
    secret: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    def accepts(self, event: str) -> bool:
        return self.enabled and (not self.events or event in self.events)


class UsageRecord(BaseModel):
    account_name: str
    usage_amount: Decimal
    recorded_at: datetime

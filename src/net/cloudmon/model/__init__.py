"""
Database Models

SQLAlchemy ORM models backing the relational persistence backend.

Tables:
- users.py: dashboard users (unique username)
- accounts.py: provider accounts, optionally owned by a user
- config.py: key/value configuration, including the admin credential
- webhooks.py: webhook registrations, optionally owned by a user
- usage.py: usage history with a composite (account_name, recorded_at) index

Accounts and webhooks cascade on user deletion. Upsert statements are built with
the dialect's ON CONFLICT support so the same code runs on PostgreSQL and SQLite.
"""
from net.cloudmon.model.accounts import AccountRow
from net.cloudmon.model.base import Base
from net.cloudmon.model.config import ConfigEntry
from net.cloudmon.model.usage import UsageHistoryRow
from net.cloudmon.model.users import UserRow
from net.cloudmon.model.webhooks import WebhookRow

__all__ = [
    "AccountRow",
    "Base",
    "ConfigEntry",
    "UsageHistoryRow",
    "UserRow",
    "WebhookRow",
]

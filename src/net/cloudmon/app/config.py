"""
Configuration for the cloudmon service.

Settings are loaded from environment variables with pydantic-settings, using
defaults that let the service run with zero external infrastructure: JSON
files under DATA_DIR and in-process sessions. Setting DATABASE_URL or
REDIS_URL upgrades storage at startup when the endpoint is reachable.

Shared resources created during startup are published on the aiohttp
application through the typed AppKeys at the bottom of this module.
"""

import asyncio
from typing import Final, Optional

from aiohttp import ClientSession, web
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

from net.cloudmon.app.metrics import MetricsClient
from net.cloudmon.credentials import CredentialManager
from net.cloudmon.notify.dispatcher import NotificationDispatcher
from net.cloudmon.session.store import SessionStore
from net.cloudmon.store.base import PersistenceBackend

ASYNCPG_SCHEME = "postgresql+asyncpg://"
_POSTGRES_SCHEMES = ("postgres://", "postgresql://")


def normalize_database_url(value: Optional[str]) -> Optional[str]:
    """Map bare postgres URLs onto the asyncpg driver; blank values mean unset."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    for scheme in _POSTGRES_SCHEMES:
        if value.startswith(scheme):
            return ASYNCPG_SCHEME + value[len(scheme):]
    return value


class Settings(BaseSettings):
    """
    Application settings for the cloudmon service.

    Environment variables map onto fields case-insensitively. The database and
    cache connection strings accept either of their historical names.
    """

    debug: bool = False
    """
    Enable verbose logging of outbound HTTP requests.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=3000)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. No error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    database_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("database_url", "pg_dsn"),
    )
    """
    Relational database connection string. File storage is used when unset or
    when the database cannot be reached at startup.
    Set with DATABASE_URL or PG_DSN environment variables.
    """

    database_probe_timeout: float = 10.0
    """
    Seconds allowed for the startup connectivity probe and schema creation.
    Set with DATABASE_PROBE_TIMEOUT environment variable.
    """

    database_query_timeout: float = 30.0
    """
    Seconds any single database statement, connection attempt or pool checkout
    may take after startup.
    Set with DATABASE_QUERY_TIMEOUT environment variable.
    """

    redis_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("redis_url", "redis_dsn"),
    )
    """
    Redis connection string for shared sessions. In-memory sessions are used
    when unset or when the server does not answer PING at startup.
    Set with REDIS_URL or REDIS_DSN environment variables.
    """

    data_dir: str = "./data"
    """
    Directory holding the JSON files of the file backend.
    Set with DATA_DIR environment variable.
    """

    accounts_secret: Optional[str] = None
    """
    AES-256 key for account tokens, as 64 hex characters. Any other value
    disables encryption with a warning.
    Set with ACCOUNTS_SECRET environment variable.
    """

    bcrypt_rounds: int = 12
    """
    bcrypt cost factor for admin and user passwords.
    Set with BCRYPT_ROUNDS environment variable.
    """

    quota_warning_threshold: float = 1.0
    """
    Remaining quota, in dollars, below which a quota_warning event is sent.
    Set with QUOTA_WARNING_THRESHOLD environment variable.
    """

    session_sweep_interval: int = 3600
    """
    Seconds between sweeps of expired in-memory sessions.
    Set with SESSION_SWEEP_INTERVAL environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("database_url", mode="before")
    @classmethod
    def decode_database_url(cls, v) -> Optional[str]:
        if v is None or isinstance(v, str):
            return normalize_database_url(v)
        raise ValueError("database_url must be a connection string")

    @field_validator("redis_url", "sentry_dsn", "accounts_secret", mode="before")
    @classmethod
    def blank_as_unset(cls, v) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v


SESSION_TOKEN_HEADER = "X-Session-Token"

SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

PersistenceAppKey: Final = web.AppKey("persistence", PersistenceBackend)
"""AppKey for the persistence backend chosen at startup"""

SessionStoreAppKey: Final = web.AppKey("session_store", SessionStore)
"""AppKey for the session store chosen at startup"""

CredentialManagerAppKey: Final = web.AppKey("credential_manager", CredentialManager)
"""AppKey for the encryption-aware credential façade"""

DispatcherAppKey: Final = web.AppKey("dispatcher", NotificationDispatcher)
"""AppKey for the webhook notification dispatcher"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

SessionSweepTaskAppKey: Final = web.AppKey("session_sweep_task", asyncio.Task[None])
"""AppKey for the background task that removes expired sessions"""

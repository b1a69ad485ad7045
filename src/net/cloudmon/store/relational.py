"""Relational persistence backend on SQLAlchemy's asyncio engine.

Production deployments point DATABASE_URL at PostgreSQL (asyncpg driver). The
same code runs against SQLite (aiosqlite driver) for single-host setups and for
the test suite; the only dialect-specific pieces are the ON CONFLICT insert
construct and enabling foreign keys on SQLite connections.

Usage history rows are never physically deleted here. Old records are excluded
by the query window only.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Union

import sentry_sdk
from pydantic import ValidationError
from sqlalchemy import delete, event, insert, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from net.cloudmon.errors import (
    ConfigurationUnavailable,
    DuplicateUsernameError,
    StorageFailure,
)
from net.cloudmon.model import (
    AccountRow,
    Base,
    ConfigEntry,
    UsageHistoryRow,
    UserRow,
    WebhookRow,
)
from net.cloudmon.model.config import upsert_config_stmt
from net.cloudmon.model.webhooks import upsert_webhook_stmt
from net.cloudmon.store.base import (
    ADMIN_PASSWORD_KEY,
    USAGE_RETENTION_DAYS,
    PersistenceBackend,
)
from net.cloudmon.store.types import (
    Account,
    EncryptedToken,
    Role,
    UsageRecord,
    User,
    WebhookRegistration,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10.0
"""Seconds allowed for the startup connectivity probe and schema creation."""

QUERY_TIMEOUT = 30.0
"""Seconds a statement, connection attempt or pool checkout may take."""


def engine_options(
    dialect_name: str, query_timeout: float = QUERY_TIMEOUT
) -> Dict[str, Any]:
    """
    Keyword arguments for create_async_engine that bound every database call.

    asyncpg receives a connect timeout and a per-statement command timeout, and
    pool checkouts give up after the same number of seconds. SQLite only waits
    on file locks, so it receives the driver's busy timeout.
    """
    if dialect_name == "postgresql":
        return {
            "pool_pre_ping": True,
            "pool_timeout": query_timeout,
            "connect_args": {
                "timeout": query_timeout,
                "command_timeout": query_timeout,
            },
        }
    if dialect_name == "sqlite":
        return {"pool_pre_ping": True, "connect_args": {"timeout": query_timeout}}
    return {"pool_pre_ping": True, "pool_timeout": query_timeout}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _account_from_row(row: AccountRow) -> Account:
    encrypted: Optional[EncryptedToken] = None
    if row.encrypted_token:
        try:
            encrypted = EncryptedToken.model_validate(row.encrypted_token)
        except ValidationError:
            logger.warning("Ignoring malformed encrypted token for account %s", row.name)
    return Account(
        name=row.name,
        token=row.token,
        user_id=row.user_id,
        encrypted_token=encrypted,
    )


def _account_values(
    account: Account, scope: Optional[int], now: datetime
) -> Dict[str, Any]:
    encrypted = account.encrypted_token
    return {
        "user_id": scope,
        "name": account.name,
        "token": None if encrypted is not None else account.token,
        "encrypted_token": encrypted.model_dump() if encrypted is not None else None,
        "created_at": now,
        "updated_at": now,
    }


def _user_from_row(row: UserRow, include_hash: bool = True) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash if include_hash else None,
        role=Role(row.role),
        created_at=as_utc(row.created_at),
    )


def _webhook_from_row(row: WebhookRow) -> WebhookRegistration:
    return WebhookRegistration(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        url=row.url,
        secret=row.secret,
        events=row.events,
        enabled=row.enabled,
        created_at=as_utc(row.created_at),
    )


class RelationalBackend(PersistenceBackend):
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.dialect_name = engine.dialect.name
        self.session_maker = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def kind(self) -> str:  # type: ignore[override]
        if self.dialect_name == "postgresql":
            return "PostgreSQL"
        return self.dialect_name.capitalize()

    @classmethod
    async def connect(
        cls,
        database_url: str,
        probe_timeout: float = PROBE_TIMEOUT,
        query_timeout: float = QUERY_TIMEOUT,
    ) -> "RelationalBackend":
        """
        Open the engine, probe it, and make sure every table exists.

        Every later statement is bounded by query_timeout (see engine_options).

        Raises:
            ConfigurationUnavailable: the database could not be reached or the
                schema could not be created. The engine is disposed first.
        """
        try:
            dialect_name = make_url(database_url).get_backend_name()
            engine = create_async_engine(
                database_url, **engine_options(dialect_name, query_timeout)
            )
        except Exception as e:
            raise ConfigurationUnavailable.database(str(e)) from e

        if engine.dialect.name == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        backend = cls(engine)
        try:
            await asyncio.wait_for(backend.ensure_schema(), timeout=probe_timeout)
        except Exception as e:
            await engine.dispose()
            raise ConfigurationUnavailable.database(
                f"{type(e).__name__}: {e}"
            ) from e
        return backend

    async def ensure_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @staticmethod
    def _account_scope(scope: Optional[int]):
        if scope is None:
            return AccountRow.user_id.is_(None)
        return AccountRow.user_id == scope

    async def load_accounts(self, scope: Optional[int] = None) -> List[Account]:
        stmt = (
            select(AccountRow)
            .where(self._account_scope(scope))
            .order_by(AccountRow.id)
        )
        try:
            async with self.session_maker() as session:
                rows = (await session.scalars(stmt)).all()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load accounts from the database")
            return []
        return [_account_from_row(row) for row in rows]

    async def save_accounts(
        self, accounts: List[Account], scope: Optional[int] = None
    ) -> bool:
        now = utcnow()
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(
                        delete(AccountRow).where(self._account_scope(scope))
                    )
                    values = [_account_values(a, scope, now) for a in accounts]
                    if values:
                        await session.execute(insert(AccountRow), values)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to save accounts to the database, rolled back")
            return False
        return True

    async def load_admin_credential(self) -> Optional[str]:
        stmt = select(ConfigEntry.value).where(ConfigEntry.key == ADMIN_PASSWORD_KEY)
        try:
            async with self.session_maker() as session:
                return (await session.scalars(stmt)).first()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load the admin credential from the database")
            return None

    async def save_admin_credential(self, value: str) -> bool:
        stmt = upsert_config_stmt(self.dialect_name, ADMIN_PASSWORD_KEY, value, utcnow())
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(stmt)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to save the admin credential to the database")
            return False
        return True

    async def create_user(
        self, username: str, password_hash: str, role: Union[Role, str] = Role.user
    ) -> int:
        now = utcnow()
        row = UserRow(
            username=username,
            password_hash=password_hash,
            role=Role(role).value,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    session.add(row)
                    await session.flush()
                    user_id = row.id
        except IntegrityError as e:
            raise DuplicateUsernameError(username) from e
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to create user %s", username)
            raise StorageFailure.write(f"user {username}") from e
        return user_id

    async def get_user(self, username: str) -> Optional[User]:
        stmt = select(UserRow).where(UserRow.username == username)
        try:
            async with self.session_maker() as session:
                row = (await session.scalars(stmt)).first()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load user %s from the database", username)
            return None
        return _user_from_row(row) if row is not None else None

    async def get_users(self) -> List[User]:
        try:
            async with self.session_maker() as session:
                rows = (
                    await session.scalars(select(UserRow).order_by(UserRow.id))
                ).all()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load users from the database")
            return []
        return [_user_from_row(row, include_hash=False) for row in rows]

    async def delete_user(self, user_id: int) -> bool:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(UserRow).where(UserRow.id == user_id)
                    )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to delete user %s", user_id)
            return False
        return result.rowcount > 0

    async def get_webhooks(
        self, scope: Optional[int] = None
    ) -> List[WebhookRegistration]:
        stmt = select(WebhookRow).order_by(WebhookRow.created_at, WebhookRow.id)
        if scope is not None:
            stmt = stmt.where(WebhookRow.user_id == scope)
        try:
            async with self.session_maker() as session:
                rows = (await session.scalars(stmt)).all()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load webhooks from the database")
            return []
        return [_webhook_from_row(row) for row in rows]

    async def save_webhook(self, webhook: WebhookRegistration) -> bool:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(
                        upsert_webhook_stmt(self.dialect_name, webhook)
                    )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to save webhook %s", webhook.id)
            return False
        return True

    async def delete_webhook(self, webhook_id: str) -> bool:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(WebhookRow).where(WebhookRow.id == webhook_id)
                    )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to delete webhook %s", webhook_id)
            return False
        return result.rowcount > 0

    async def record_usage(
        self,
        account_name: str,
        amount: Union[Decimal, float, str],
        recorded_at: Optional[datetime] = None,
    ) -> bool:
        row = UsageHistoryRow(
            account_name=account_name,
            usage_amount=Decimal(str(amount)),
            recorded_at=as_utc(recorded_at) if recorded_at else utcnow(),
        )
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    session.add(row)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to record usage for %s", account_name)
            return False
        return True

    async def get_usage_history(
        self, account_name: Optional[str] = None, days: int = USAGE_RETENTION_DAYS
    ) -> List[UsageRecord]:
        since = utcnow() - timedelta(days=days)
        stmt = (
            select(UsageHistoryRow)
            .where(UsageHistoryRow.recorded_at > since)
            .order_by(UsageHistoryRow.recorded_at, UsageHistoryRow.id)
        )
        if account_name:
            stmt = stmt.where(UsageHistoryRow.account_name == account_name)
        try:
            async with self.session_maker() as session:
                rows = (await session.scalars(stmt)).all()
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to load usage history from the database")
            return []
        return [
            UsageRecord(
                account_name=row.account_name,
                usage_amount=Decimal(str(row.usage_amount)),
                recorded_at=as_utc(row.recorded_at),
            )
            for row in rows
        ]

"""JSON file persistence backend.

Each entity type lives in its own indented JSON file inside the data directory
and every save rewrites the whole file. File access runs in a worker thread and
each file has its own asyncio lock, so read-modify-write cycles issued by
concurrent requests within one process are serialised. Writes go to a sibling
temporary file that is then moved over the original; there is no protection
against concurrent writers in other processes.

Usage history is pruned to the last USAGE_RETENTION_DAYS days on every write.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import sentry_sdk
from pydantic import ValidationError

from net.cloudmon.errors import DuplicateUsernameError, StorageFailure
from net.cloudmon.store.base import USAGE_RETENTION_DAYS, PersistenceBackend
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

ACCOUNTS_FILE = "accounts.json"
PASSWORD_FILE = "password.json"
USERS_FILE = "users.json"
WEBHOOKS_FILE = "webhooks.json"
USAGE_HISTORY_FILE = "usage-history.json"


def ensure_data_dir(data_dir: Union[str, Path]) -> Path:
    """Create the data directory. Failure here is fatal for the process."""
    path = Path(data_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as fd:
        return json.load(fd)


def _write_json(path: Path, data: Any) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fd:
        json.dump(data, fd, indent=2, ensure_ascii=False)
    os.replace(tmp_path, path)


def _account_to_json(account: Account, scope: Optional[int]) -> Dict[str, Any]:
    record: Dict[str, Any] = {"name": account.name}
    if account.encrypted_token is not None:
        record["encrypted_token"] = account.encrypted_token.model_dump()
    else:
        record["token"] = account.token
    if scope is not None:
        record["user_id"] = scope
    return record


def _account_from_json(record: Dict[str, Any]) -> Account:
    encrypted = record.get("encrypted_token")
    return Account(
        name=record["name"],
        token=record.get("token"),
        user_id=record.get("user_id"),
        encrypted_token=EncryptedToken(**encrypted) if encrypted else None,
    )


def _usage_from_json(record: Dict[str, Any]) -> Optional[UsageRecord]:
    try:
        return UsageRecord(
            account_name=record["account_name"],
            usage_amount=Decimal(str(record["usage_amount"])),
            recorded_at=as_utc(datetime.fromisoformat(record["recorded_at"])),
        )
    except (KeyError, ValueError, TypeError, InvalidOperation):
        logger.warning("Skipping malformed usage history record: %s", record)
        return None


def _usage_to_json(record: UsageRecord) -> Dict[str, Any]:
    return {
        "account_name": record.account_name,
        "usage_amount": str(record.usage_amount),
        "recorded_at": record.recorded_at.isoformat(),
    }


class FileBackend(PersistenceBackend):
    kind = "File"

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = ensure_data_dir(data_dir)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def path(self, filename: str) -> Path:
        return self.data_dir / filename

    async def _read(self, filename: str, default: Any) -> Any:
        try:
            data = await asyncio.to_thread(_read_json, self.path(filename))
        except (OSError, ValueError) as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to read %s", filename)
            return default
        return default if data is None else data

    async def _write(self, filename: str, data: Any) -> bool:
        try:
            await asyncio.to_thread(_write_json, self.path(filename), data)
            return True
        except (OSError, TypeError, ValueError) as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Failed to write %s", filename)
            return False

    async def _read_list(self, filename: str) -> List[Dict[str, Any]]:
        data = await self._read(filename, [])
        if not isinstance(data, list):
            logger.error("Expected a JSON array in %s, ignoring its contents", filename)
            return []
        return data

    async def load_accounts(self, scope: Optional[int] = None) -> List[Account]:
        records = await self._read_list(ACCOUNTS_FILE)
        accounts = []
        for record in records:
            if record.get("user_id") != scope:
                continue
            try:
                accounts.append(_account_from_json(record))
            except (KeyError, TypeError, ValidationError):
                logger.warning("Skipping malformed account record in %s", ACCOUNTS_FILE)
        return accounts

    async def save_accounts(
        self, accounts: List[Account], scope: Optional[int] = None
    ) -> bool:
        async with self._locks[ACCOUNTS_FILE]:
            records = await self._read_list(ACCOUNTS_FILE)
            kept = [r for r in records if r.get("user_id") != scope]
            kept.extend(_account_to_json(account, scope) for account in accounts)
            return await self._write(ACCOUNTS_FILE, kept)

    async def load_admin_credential(self) -> Optional[str]:
        data = await self._read(PASSWORD_FILE, {})
        if not isinstance(data, dict):
            return None
        return data.get("password")

    async def save_admin_credential(self, value: str) -> bool:
        async with self._locks[PASSWORD_FILE]:
            return await self._write(PASSWORD_FILE, {"password": value})

    async def create_user(
        self, username: str, password_hash: str, role: Union[Role, str] = Role.user
    ) -> int:
        async with self._locks[USERS_FILE]:
            users = await self._read_list(USERS_FILE)
            if any(u.get("username") == username for u in users):
                raise DuplicateUsernameError(username)

            user_id = max((int(u.get("id", 0)) for u in users), default=0) + 1
            user = User(
                id=user_id,
                username=username,
                password_hash=password_hash,
                role=Role(role),
            )
            users.append(user.model_dump(mode="json"))
            if not await self._write(USERS_FILE, users):
                raise StorageFailure.write(f"user {username}")
            return user_id

    async def get_user(self, username: str) -> Optional[User]:
        for record in await self._read_list(USERS_FILE):
            if record.get("username") == username:
                return User.model_validate(record)
        return None

    async def get_users(self) -> List[User]:
        users = [
            User.model_validate(record).model_copy(update={"password_hash": None})
            for record in await self._read_list(USERS_FILE)
        ]
        return sorted(users, key=lambda u: u.id)

    async def delete_user(self, user_id: int) -> bool:
        async with self._locks[USERS_FILE]:
            users = await self._read_list(USERS_FILE)
            remaining = [u for u in users if u.get("id") != user_id]
            if len(remaining) == len(users):
                return False
            if not await self._write(USERS_FILE, remaining):
                return False

        async with self._locks[ACCOUNTS_FILE]:
            accounts = await self._read_list(ACCOUNTS_FILE)
            owned = [a for a in accounts if a.get("user_id") == user_id]
            if owned:
                await self._write(
                    ACCOUNTS_FILE, [a for a in accounts if a.get("user_id") != user_id]
                )

        async with self._locks[WEBHOOKS_FILE]:
            webhooks = await self._read_list(WEBHOOKS_FILE)
            owned = [w for w in webhooks if w.get("user_id") == user_id]
            if owned:
                await self._write(
                    WEBHOOKS_FILE, [w for w in webhooks if w.get("user_id") != user_id]
                )

        return True

    async def get_webhooks(
        self, scope: Optional[int] = None
    ) -> List[WebhookRegistration]:
        webhooks = []
        for record in await self._read_list(WEBHOOKS_FILE):
            if scope is not None and record.get("user_id") != scope:
                continue
            try:
                webhooks.append(WebhookRegistration.model_validate(record))
            except ValidationError:
                logger.warning("Skipping malformed webhook record: %s", record.get("id"))
        return webhooks

    async def save_webhook(self, webhook: WebhookRegistration) -> bool:
        async with self._locks[WEBHOOKS_FILE]:
            webhooks = await self._read_list(WEBHOOKS_FILE)
            record = webhook.model_dump(mode="json")
            for index, existing in enumerate(webhooks):
                if existing.get("id") == webhook.id:
                    webhooks[index] = record
                    break
            else:
                webhooks.append(record)
            return await self._write(WEBHOOKS_FILE, webhooks)

    async def delete_webhook(self, webhook_id: str) -> bool:
        async with self._locks[WEBHOOKS_FILE]:
            webhooks = await self._read_list(WEBHOOKS_FILE)
            remaining = [w for w in webhooks if w.get("id") != webhook_id]
            if len(remaining) == len(webhooks):
                return False
            return await self._write(WEBHOOKS_FILE, remaining)

    async def record_usage(
        self,
        account_name: str,
        amount: Union[Decimal, float, str],
        recorded_at: Optional[datetime] = None,
    ) -> bool:
        record = UsageRecord(
            account_name=account_name,
            usage_amount=Decimal(str(amount)),
            recorded_at=as_utc(recorded_at) if recorded_at else utcnow(),
        )
        cutoff = utcnow() - timedelta(days=USAGE_RETENTION_DAYS)

        async with self._locks[USAGE_HISTORY_FILE]:
            history = [
                parsed
                for parsed in map(
                    _usage_from_json, await self._read_list(USAGE_HISTORY_FILE)
                )
                if parsed is not None
            ]
            history.append(record)
            retained = [h for h in history if h.recorded_at > cutoff]
            return await self._write(
                USAGE_HISTORY_FILE, [_usage_to_json(h) for h in retained]
            )

    async def get_usage_history(
        self, account_name: Optional[str] = None, days: int = USAGE_RETENTION_DAYS
    ) -> List[UsageRecord]:
        since = utcnow() - timedelta(days=days)
        history = [
            parsed
            for parsed in map(_usage_from_json, await self._read_list(USAGE_HISTORY_FILE))
            if parsed is not None
            and parsed.recorded_at > since
            and (not account_name or parsed.account_name == account_name)
        ]
        return sorted(history, key=lambda h: h.recorded_at)

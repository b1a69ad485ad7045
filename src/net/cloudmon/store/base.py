from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from net.cloudmon.store.types import (
    Account,
    Role,
    UsageRecord,
    User,
    WebhookRegistration,
)

ADMIN_PASSWORD_KEY = "admin_password"
"""Config key holding the admin credential."""

USAGE_RETENTION_DAYS = 30
"""Window kept by the file backend and the default history query range."""


class PersistenceBackend(ABC):
    """
    Storage contract shared by the file and relational backends.

    `scope` is the owning user id for accounts and webhooks; None is the global
    (unscoped) partition. Read methods never raise on storage errors: they log
    and return an empty result. Write methods return False on failure, except
    `create_user`, which has an id to return and so raises instead.
    """

    kind: str = "unknown"

    @abstractmethod
    async def load_accounts(self, scope: Optional[int] = None) -> List[Account]:
        """Return the scope's accounts in insertion order."""

    @abstractmethod
    async def save_accounts(
        self, accounts: List[Account], scope: Optional[int] = None
    ) -> bool:
        """Replace the scope's whole account set with `accounts`."""

    @abstractmethod
    async def load_admin_credential(self) -> Optional[str]:
        pass

    @abstractmethod
    async def save_admin_credential(self, value: str) -> bool:
        pass

    @abstractmethod
    async def create_user(
        self, username: str, password_hash: str, role: Union[Role, str] = Role.user
    ) -> int:
        """
        Create a user and return its id.

        Raises:
            DuplicateUsernameError: the username is already taken
            StorageFailure: the new user could not be written
        """

    @abstractmethod
    async def get_user(self, username: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_users(self) -> List[User]:
        """Return every user without password hashes, ordered by id."""

    @abstractmethod
    async def delete_user(self, user_id: int) -> bool:
        """Delete a user together with the accounts and webhooks it owns."""

    @abstractmethod
    async def get_webhooks(
        self, scope: Optional[int] = None
    ) -> List[WebhookRegistration]:
        """Return the scope's webhooks, or every webhook when scope is None."""

    @abstractmethod
    async def save_webhook(self, webhook: WebhookRegistration) -> bool:
        """Insert or overwrite a webhook by id."""

    @abstractmethod
    async def delete_webhook(self, webhook_id: str) -> bool:
        pass

    @abstractmethod
    async def record_usage(
        self,
        account_name: str,
        amount: Union[Decimal, float, str],
        recorded_at: Optional[datetime] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def get_usage_history(
        self, account_name: Optional[str] = None, days: int = USAGE_RETENTION_DAYS
    ) -> List[UsageRecord]:
        """Return records newer than `days` ago, oldest first."""

    async def close(self) -> None:
        pass

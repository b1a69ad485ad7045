"""Credential façade over the persistence backend.

CredentialManager applies token encryption on the way in and out of storage and
owns the admin password flow, including the silent upgrade of legacy
clear-text admin passwords to bcrypt hashes on first successful login.

Decrypted tokens live only in the objects returned from a single call; nothing
here caches them.
"""

import logging
from typing import List, Optional, Union

from net.cloudmon.crypto.cipher import SecretCipher
from net.cloudmon.crypto.passwords import (
    DEFAULT_ROUNDS,
    hash_password,
    is_hashed,
    verify_password,
)
from net.cloudmon.errors import RecordCorruption
from net.cloudmon.store.base import PersistenceBackend
from net.cloudmon.store.types import Account, Role, User

logger = logging.getLogger(__name__)


class CredentialManager:
    def __init__(
        self,
        backend: PersistenceBackend,
        cipher: Optional[SecretCipher] = None,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self.backend = backend
        self.cipher = cipher
        self.bcrypt_rounds = bcrypt_rounds

    @property
    def encryption_enabled(self) -> bool:
        return self.cipher is not None

    def _reveal(self, account: Account) -> Account:
        encrypted = account.encrypted_token
        if encrypted is None:
            return account

        if self.cipher is None:
            logger.warning(
                "Account %s has an encrypted token but no encryption key is configured",
                account.name,
            )
            return account

        try:
            token = self.cipher.decrypt(encrypted)
        except RecordCorruption as e:
            logger.warning("Failed to decrypt token for account %s: %s", account.name, e)
            return account

        return account.model_copy(update={"token": token, "encrypted_token": None})

    def _seal(self, account: Account) -> Account:
        if not account.token:
            return account

        if self.cipher is None:
            return account.model_copy(update={"encrypted_token": None})

        try:
            encrypted = self.cipher.encrypt(account.token)
        except Exception as e:
            logger.warning(
                "Failed to encrypt token for account %s, storing it in clear: %s",
                account.name,
                e,
            )
            return account.model_copy(update={"encrypted_token": None})

        return account.model_copy(update={"token": None, "encrypted_token": encrypted})

    async def load_accounts(self, scope: Optional[int] = None) -> List[Account]:
        """
        Load the scope's accounts with tokens decrypted.

        A record that cannot be decrypted keeps whatever clear token is stored
        (usually None) and still carries its ciphertext, so saving the list
        again does not destroy it.
        """
        return [self._reveal(a) for a in await self.backend.load_accounts(scope)]

    async def save_accounts(
        self, accounts: List[Account], scope: Optional[int] = None
    ) -> bool:
        sealed = [self._seal(a) for a in accounts]
        saved = await self.backend.save_accounts(sealed, scope)
        if saved and self.encryption_enabled:
            logger.debug("Stored %d account tokens encrypted", len(sealed))
        return saved

    async def remove_account(
        self, index: int, scope: Optional[int] = None
    ) -> Optional[Account]:
        """Remove the account at index and save the remaining list."""
        accounts = await self.load_accounts(scope)
        if not 0 <= index < len(accounts):
            return None
        removed = accounts.pop(index)
        if not await self.save_accounts(accounts, scope):
            return None
        return removed

    async def load_admin_credential(self) -> Optional[str]:
        return await self.backend.load_admin_credential()

    async def save_admin_credential(self, password: str) -> bool:
        hashed = await hash_password(password, self.bcrypt_rounds)
        return await self.backend.save_admin_credential(hashed)

    async def verify_admin_password(self, password: str) -> bool:
        """
        Check the admin password.

        A legacy clear-text credential that matches is immediately replaced with
        its bcrypt hash.
        """
        stored = await self.load_admin_credential()
        if not stored:
            return False

        if not await verify_password(password, stored):
            return False

        if not is_hashed(stored):
            if await self.save_admin_credential(password):
                logger.info("Admin password upgraded to a bcrypt hash")
            else:
                logger.error("Failed to upgrade the legacy admin password")
        return True

    async def register_user(
        self, username: str, password: str, role: Union[Role, str] = Role.user
    ) -> int:
        """
        Hash the password and create the user.

        Raises:
            DuplicateUsernameError: the username is already taken
        """
        hashed = await hash_password(password, self.bcrypt_rounds)
        return await self.backend.create_user(username, hashed, role)

    async def authenticate_user(self, username: str, password: str) -> Optional[User]:
        user = await self.backend.get_user(username)
        if user is None or not user.password_hash:
            return None
        if not await verify_password(password, user.password_hash):
            return None
        return user

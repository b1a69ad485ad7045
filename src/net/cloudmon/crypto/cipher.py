"""Authenticated encryption of account tokens.

Tokens are sealed with AES-256-GCM using a key supplied as 64 hex characters.
The stored form keeps the ciphertext, nonce and authentication tag as separate
hex strings so records stay human-readable in the JSON and SQL backends.
"""

import logging
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from net.cloudmon.errors import RecordCorruption
from net.cloudmon.store.types import EncryptedToken

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def is_valid_key(value: Optional[str]) -> bool:
    """Return True when value is exactly 64 hex characters (a 256-bit key)."""
    return value is not None and _HEX_KEY.match(value) is not None


class SecretCipher:
    """
    AES-256-GCM wrapper bound to a single key.

    The cipher itself is the `cryptography` AEAD implementation; this class only
    handles the hex encoding and the split between ciphertext and tag.
    """

    def __init__(self, key_hex: str) -> None:
        if not is_valid_key(key_hex):
            raise ValueError("encryption key must be 64 hex characters")
        self._aead = AESGCM(bytes.fromhex(key_hex))

    @classmethod
    def from_setting(cls, key_hex: Optional[str]) -> Optional["SecretCipher"]:
        """
        Build a cipher from the configured key, or None when encryption is disabled.

        A key that is present but not 64 hex characters disables encryption with
        a warning instead of failing startup.
        """
        if not key_hex:
            return None
        if not is_valid_key(key_hex):
            logger.warning(
                "ACCOUNTS_SECRET is set but is not 64 hex characters, token encryption disabled"
            )
            return None
        return cls(key_hex)

    def encrypt(self, plaintext: str) -> EncryptedToken:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedToken(
            ciphertext=sealed[:-TAG_SIZE].hex(),
            nonce=nonce.hex(),
            tag=sealed[-TAG_SIZE:].hex(),
        )

    def decrypt(self, encrypted: EncryptedToken) -> str:
        """
        Open a sealed token.

        Raises:
            RecordCorruption: the record is not valid hex, has the wrong nonce
                size, or fails authentication (wrong key or tampered data).
        """
        try:
            ciphertext = bytes.fromhex(encrypted.ciphertext)
            nonce = bytes.fromhex(encrypted.nonce)
            tag = bytes.fromhex(encrypted.tag)
        except ValueError as e:
            raise RecordCorruption.malformed(str(e)) from e

        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise RecordCorruption.malformed("unexpected nonce or tag length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise RecordCorruption.undecryptable("authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RecordCorruption.undecryptable(str(e)) from e

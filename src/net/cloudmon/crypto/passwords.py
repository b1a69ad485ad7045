"""Admin password hashing with bcrypt.

bcrypt is CPU-bound, so hashing and checking run in a worker thread to keep the
event loop responsive. Values that do not carry the bcrypt `$2` prefix are
treated as legacy clear-text passwords and compared in constant time.
"""

import asyncio
import hmac

import bcrypt

DEFAULT_ROUNDS = 12

_BCRYPT_PREFIX = "$2"


def is_hashed(value: object) -> bool:
    if not value or not isinstance(value, str):
        return False
    return value.startswith(_BCRYPT_PREFIX)


async def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    encoded = password.encode("utf-8")
    return await asyncio.to_thread(
        lambda: bcrypt.hashpw(encoded, bcrypt.gensalt(rounds)).decode("utf-8")
    )


async def verify_password(password: str, stored: str) -> bool:
    """
    Check a password against a stored value.

    Legacy clear-text values match by equality. Malformed hashes return False
    rather than propagating a ValueError.
    """
    if not password or not stored:
        return False

    if not is_hashed(stored):
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))

    encoded_plain = password.encode("utf-8")
    encoded_hash = stored.encode("utf-8")
    try:
        return await asyncio.to_thread(
            lambda: bcrypt.checkpw(encoded_plain, encoded_hash)
        )
    except ValueError:
        return False

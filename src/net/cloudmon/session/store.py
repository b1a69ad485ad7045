"""Bearer session storage.

Sessions are opaque random tokens with a fixed ten day lifetime. Two stores
share one contract:

- MemorySessionStore keeps sessions in a process-local dict. Expired entries are
  removed when validated and by an hourly sweep task.
- DistributedSessionStore keeps sessions in Redis under `session:<token>` with
  native key expiry, so sessions survive restarts and need no sweep.

Both stores also check `expires_at` on every validation, so a session past its
lifetime is destroyed and never returned, whichever store is active.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
import logging
import secrets
from typing import Callable, Dict, Optional

from pydantic import ValidationError
from redis import asyncio as redis
from redis.exceptions import RedisError

from net.cloudmon.errors import ConfigurationUnavailable, SessionStoreUnavailable
from net.cloudmon.store.types import Session, utcnow

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=10)
SESSION_KEY_PREFIX = "session:"
TOKEN_PREFIX = "session_"

REDIS_SOCKET_TIMEOUT = 5.0


def generate_session_token() -> str:
    return TOKEN_PREFIX + secrets.token_hex(32)


class SessionStore(ABC):
    kind: str = "unknown"

    def __init__(
        self,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = ttl
        self.clock = clock

    async def create_session(self, user_id: str = "admin") -> str:
        """
        Issue a new token for user_id.

        Unlike lookups and deletes, which treat a cache failure as a missing
        session, a failed write cannot hand back a usable token.

        Raises:
            SessionStoreUnavailable: the session could not be stored
        """
        token = generate_session_token()
        now = self.clock()
        session = Session(
            token=token,
            user_id=str(user_id),
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self._put(session)
        return token

    async def validate_session(self, token: Optional[str]) -> Optional[Session]:
        """Return the live session for token, destroying it first if it has expired."""
        if not token:
            return None

        session = await self._get(token)
        if session is None:
            return None

        if self.clock() > session.expires_at:
            await self.destroy_session(token)
            return None

        return session

    @abstractmethod
    async def _put(self, session: Session) -> None:
        pass

    @abstractmethod
    async def _get(self, token: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def destroy_session(self, token: Optional[str]) -> None:
        """Remove a session. Unknown or empty tokens are ignored."""

    @abstractmethod
    async def get_active_session_count(self) -> int:
        pass

    async def clean_expired_sessions(self) -> int:
        """Drop expired sessions, returning how many were removed."""
        return 0

    async def close(self) -> None:
        pass


class MemorySessionStore(SessionStore):
    kind = "Memory"

    def __init__(
        self,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(ttl, clock)
        self._sessions: Dict[str, Session] = {}

    async def _put(self, session: Session) -> None:
        self._sessions[session.token] = session

    async def _get(self, token: str) -> Optional[Session]:
        return self._sessions.get(token)

    async def destroy_session(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    async def get_active_session_count(self) -> int:
        return len(self._sessions)

    async def clean_expired_sessions(self) -> int:
        now = self.clock()
        expired = [t for t, s in self._sessions.items() if now > s.expires_at]
        for token in expired:
            del self._sessions[token]
        return len(expired)


class DistributedSessionStore(SessionStore):
    kind = "Redis"

    def __init__(
        self,
        client: redis.Redis,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(ttl, clock)
        self.client = client

    @classmethod
    async def connect(cls, redis_url: str) -> "DistributedSessionStore":
        """
        Connect and PING the cache.

        Raises:
            ConfigurationUnavailable: the URL is invalid or the server did not answer.
        """
        try:
            client = redis.Redis.from_url(
                redis_url,
                socket_timeout=REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
            )
        except ValueError as e:
            raise ConfigurationUnavailable.cache(str(e)) from e

        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            raise ConfigurationUnavailable.cache(f"{type(e).__name__}: {e}") from e
        return cls(client)

    @staticmethod
    def _key(token: str) -> str:
        return SESSION_KEY_PREFIX + token

    async def _put(self, session: Session) -> None:
        try:
            await self.client.setex(
                self._key(session.token),
                int(self.ttl.total_seconds()),
                session.model_dump_json(),
            )
        except (RedisError, OSError) as e:
            logger.exception("Failed to store session")
            raise SessionStoreUnavailable.write(f"{type(e).__name__}: {e}") from e

    async def _get(self, token: str) -> Optional[Session]:
        try:
            data = await self.client.get(self._key(token))
        except RedisError:
            logger.exception("Session lookup failed")
            return None

        if data is None:
            return None

        try:
            return Session.model_validate_json(data)
        except ValidationError:
            logger.warning("Discarding unreadable session record")
            await self.destroy_session(token)
            return None

    async def destroy_session(self, token: Optional[str]) -> None:
        if not token:
            return
        try:
            await self.client.delete(self._key(token))
        except RedisError:
            logger.exception("Failed to destroy session")

    async def get_active_session_count(self) -> int:
        count = 0
        async for _ in self.client.scan_iter(match=SESSION_KEY_PREFIX + "*", count=500):
            count += 1
        return count

    async def close(self) -> None:
        await self.client.aclose()


async def create_session_store(redis_url: Optional[str]) -> SessionStore:
    """
    Choose the session store for the lifetime of the process.

    Falls back to in-memory sessions when no cache is configured or the
    configured cache cannot be reached. The choice is never re-evaluated.
    """
    if not redis_url:
        logger.info("Session storage: memory")
        return MemorySessionStore()

    try:
        store = await DistributedSessionStore.connect(redis_url)
    except ConfigurationUnavailable as e:
        logger.warning("%s", e)
        logger.warning("Falling back to in-memory sessions")
        return MemorySessionStore()

    logger.info("Session storage: redis")
    return store

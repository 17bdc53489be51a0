"""
Per-session locking.

Every mutation of a session runs under that session's lock, which makes the
session id the unit of serialisation. Two implementations:

- LocalLockManager: in-process asyncio locks, for a single coordinator
- RedisLockManager: Redis SET NX EX locks with owner tokens, for deployments
  that shard sessions across coordinator instances

Version: 1.0.0
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..exceptions import CoordinatorBusy

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """Raised when lock acquisition fails."""
    pass


class LockReleaseError(Exception):
    """Raised when lock release fails."""
    pass


class SessionLockManager(ABC):
    """Hands out one mutual-exclusion scope per session id."""

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager holding the session's lock."""
        pass

    async def cleanup(self) -> None:
        """Release resources held by the manager."""
        return None


class LocalLockManager(SessionLockManager):
    """
    asyncio.Lock per session id.

    Locks are created on first use and dropped once no coroutine holds or
    waits for them, so idle sessions cost nothing.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._refs[session_id] += 1

        try:
            async with lock:
                yield
        finally:
            self._refs[session_id] -= 1
            if self._refs[session_id] <= 0:
                self._refs.pop(session_id, None)
                self._locks.pop(session_id, None)

    @property
    def active_locks(self) -> int:
        return len(self._locks)


class DistributedLock:
    """
    Distributed lock using Redis.

    Features:
    - Automatic expiration to prevent deadlocks
    - Unique lock identifiers to prevent accidental release
    - Bounded acquisition with exponential backoff
    """

    # Lua script for atomic lock release (only if we own it)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: Redis,
        lock_name: str,
        timeout: int = 10,
        retry_attempts: int = 5,
        retry_delay: float = 0.05
    ):
        """
        Initialize distributed lock.

        Args:
            redis_client: Redis client instance
            lock_name: Name of the lock
            timeout: Lock timeout in seconds
            retry_attempts: Number of acquisition attempts
            retry_delay: Base delay between attempts in seconds
        """
        self.redis_client = redis_client
        self.lock_name = f"lock:{lock_name}"
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

        self.lock_id: Optional[str] = None
        self.acquired: bool = False

    async def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True if lock acquired

        Raises:
            LockAcquisitionError: If lock cannot be acquired
        """
        if self.acquired:
            return True

        self.lock_id = str(uuid.uuid4())

        for attempt in range(self.retry_attempts):
            try:
                acquired = await self.redis_client.set(
                    self.lock_name,
                    self.lock_id,
                    nx=True,
                    ex=self.timeout
                )
            except RedisError as e:
                logger.error(f"Redis error acquiring lock {self.lock_name}: {e}")
                raise LockAcquisitionError(f"Failed to acquire lock: {e}") from e

            if acquired:
                self.acquired = True
                logger.debug(
                    f"Lock {self.lock_name} acquired "
                    f"(id={self.lock_id[:8]}, timeout={self.timeout}s)"
                )
                return True

            if attempt < self.retry_attempts - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.debug(
                    f"Lock {self.lock_name} busy, retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.retry_attempts})"
                )
                await asyncio.sleep(delay)

        logger.warning(
            f"Failed to acquire lock {self.lock_name} after {self.retry_attempts} attempts"
        )
        raise LockAcquisitionError(
            f"Could not acquire lock {self.lock_name} after {self.retry_attempts} attempts"
        )

    async def release(self) -> bool:
        """
        Release the lock if this instance still owns it.

        Raises:
            LockReleaseError: If Redis fails during release
        """
        if not self.acquired or not self.lock_id:
            return False

        try:
            result = await self.redis_client.eval(
                self.RELEASE_SCRIPT,
                1,
                self.lock_name,
                self.lock_id
            )
        except RedisError as e:
            logger.error(f"Redis error releasing lock {self.lock_name}: {e}")
            raise LockReleaseError(f"Failed to release lock: {e}") from e
        finally:
            self.acquired = False

        if not result:
            logger.warning(
                f"Lock {self.lock_name} had expired before release "
                "(operation outlived the lock timeout)"
            )
        self.lock_id = None
        return bool(result)

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False


class RedisLockManager(SessionLockManager):
    """
    Session locks backed by Redis, shared by every coordinator instance
    pointing at the same Redis database.
    """

    def __init__(
        self,
        redis_client: Redis,
        timeout: int = 10,
        retry_attempts: int = 5,
        retry_delay: float = 0.05,
        key_prefix: str = "livesupport:session"
    ):
        self.redis_client = redis_client
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisLockManager":
        client = redis.from_url(redis_url, decode_responses=True)
        return cls(client, **kwargs)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = DistributedLock(
            redis_client=self.redis_client,
            lock_name=f"{self.key_prefix}:{session_id}",
            timeout=self.timeout,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay
        )

        try:
            await lock.acquire()
        except LockAcquisitionError as e:
            raise CoordinatorBusy(
                "Session is busy, please retry",
                session_id=session_id
            ) from e

        try:
            yield
        finally:
            await lock.release()

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def cleanup(self) -> None:
        logger.info("Closing Redis lock connection")
        await self.redis_client.aclose()


def create_lock_manager(
    backend: str = "local",
    redis_url: Optional[str] = None,
    **kwargs
) -> SessionLockManager:
    """
    Factory function to create a session lock manager.

    Args:
        backend: 'local' or 'redis'
        redis_url: Redis URL for the 'redis' backend
        **kwargs: RedisLockManager options (timeout, retry_attempts, retry_delay)
    """
    if backend == "local":
        return LocalLockManager()

    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis lock backend")
        return RedisLockManager.from_url(redis_url, **kwargs)

    raise ValueError(f"Unknown lock backend: {backend}")


__all__ = [
    'SessionLockManager',
    'LocalLockManager',
    'DistributedLock',
    'RedisLockManager',
    'LockAcquisitionError',
    'LockReleaseError',
    'create_lock_manager',
]
